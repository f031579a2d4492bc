import logging

import bcrypt
from sqlalchemy.exc import SQLAlchemyError

from models.user import User
from security.outcomes import CredentialVerifierError

logger = logging.getLogger("storefront_guard.login")

# checked against when the email is unknown so both paths cost one bcrypt round
_DUMMY_HASH = bcrypt.hashpw(b"storefront-guard-dummy", bcrypt.gensalt(rounds=12)).decode("utf-8")


def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    # bcrypt expects bytes
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")

def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8")
        )
    except ValueError:
        # malformed hash in the DB
        return False


class UserPasswordVerifier:
    """
    Credential verifier over the local users table. Anything with a
    verify(identifier, secret) -> bool method can replace it.
    """

    def verify(self, identifier: str, secret: str) -> bool:
        try:
            user = User.query.filter_by(email=identifier).first()
        except SQLAlchemyError as exc:
            logger.exception("credential lookup failed")
            raise CredentialVerifierError("credential store unavailable") from exc

        if user is None:
            verify_password(secret or "x", _DUMMY_HASH)
            return False
        return verify_password(secret, user.password_hash)
