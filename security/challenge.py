"""
New-device login challenges.

    NONE -> PENDING             issue_challenge
    PENDING -> PENDING          resend_challenge (new code, same token, TTL restarts)
    PENDING -> VERIFIED         verify_challenge with the current code
    PENDING -> EXPIRED          implicit, once expires_at passes

Only hashes of the token and the code are stored. The raw token goes back to
the client; the raw code only leaves through the notifier. Every state change
is a single conditional UPDATE, so concurrent verify / resend calls on one
token cannot both win.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_challenge import LoginChallenge
from security.fingerprint import Fingerprint
from security.outcomes import (
    ExpiredOrInvalidToken,
    InvalidCode,
    InvalidToken,
    IssuedChallenge,
    NotifierError,
    Resent,
    ResendTooSoon,
    TransientStoreError,
    Verified,
)
from security.session import hash_token, upsert_trusted_device
from utils import clock
from utils.events import ChallengeIssued, ChallengeResent, ChallengeVerified, publish

logger = logging.getLogger("storefront_guard.challenge")

PENDING = "PENDING"
VERIFIED = "VERIFIED"
EXPIRED = "EXPIRED"


def _cfg(name: str, default: int) -> int:
    return int(current_app.config.get(name, default))


def _ttl() -> timedelta:
    return timedelta(seconds=_cfg("CHALLENGE_TTL_SECONDS", 900))


def _max_attempts() -> int:
    return _cfg("CHALLENGE_MAX_VERIFY_ATTEMPTS", 5)


def generate_code(length: int = None) -> str:
    length = length or _cfg("CHALLENGE_CODE_LENGTH", 6)
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def generate_token() -> str:
    # 256 bits
    return secrets.token_urlsafe(32)


def _hash_code(code: str) -> str:
    # keyed with SECRET_KEY; a plain hash of a 6-digit code is trivially reversible
    key = current_app.config["SECRET_KEY"].encode("utf-8")
    return hmac.new(key, (code or "").strip().encode("utf-8"), hashlib.sha256).hexdigest()


def _notifier():
    return current_app.extensions["notifier"]


def _deliver(challenge: LoginChallenge, code: str, display_name: str = None) -> bool:
    fingerprint = Fingerprint.from_key(challenge.fingerprint)
    payload = {
        "kind": "login_challenge",
        "name": display_name or challenge.email.split("@")[0],
        "code": code,
        "device": fingerprint.describe(),
        "browser": fingerprint.browser_family,
        "os": fingerprint.os_family,
        "device_class": fingerprint.device_class,
        "expires_minutes": _cfg("CHALLENGE_TTL_SECONDS", 900) // 60,
    }
    try:
        sent = bool(_notifier().send(challenge.email, payload))
    except NotifierError:
        logger.exception("challenge %s code could not be delivered", challenge.id)
        return False
    if not sent:
        logger.warning("challenge %s code was not delivered", challenge.id)
    return sent


def challenge_state(challenge: LoginChallenge, now=None) -> str:
    now = now or clock.utcnow()
    if challenge.verified_at is not None:
        return VERIFIED
    if challenge.expires_at <= now or challenge.attempts >= _max_attempts():
        return EXPIRED
    return PENDING


def issue_challenge(user_id: int, email: str, fingerprint: Fingerprint, display_name: str = None,
                    ip: str = None, user_agent: str = None) -> IssuedChallenge:
    token = generate_token()
    code = generate_code()
    now = clock.utcnow()
    reason = f"New device detected: {fingerprint.browser_family} on {fingerprint.os_family}"

    challenge = LoginChallenge(
        user_id=user_id,
        email=email,
        token_hash=hash_token(token),
        code_hash=_hash_code(code),
        fingerprint=fingerprint.key,
        browser_family=fingerprint.browser_family,
        os_family=fingerprint.os_family,
        device_class=fingerprint.device_class,
        reason=reason,
        created_at=now,
        expires_at=now + _ttl(),
        last_sent_at=now,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
    )
    try:
        db.session.add(challenge)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("could not persist challenge for user %s", user_id)
        raise TransientStoreError("challenge not created") from exc

    logger.info("challenge %s issued for user %s (%s)", challenge.id, user_id, fingerprint.key)
    email_sent = _deliver(challenge, code, display_name)
    publish(ChallengeIssued(
        challenge_id=challenge.id,
        user_id=user_id,
        fingerprint=fingerprint.key,
        expires_at=challenge.expires_at,
    ))
    return IssuedChallenge(
        token=token,
        challenge_id=challenge.id,
        expires_at=challenge.expires_at,
        email_sent=email_sent,
        reason=reason,
    )


def _find_live(token: str, now):
    if not token or not isinstance(token, str):
        return None
    return (
        LoginChallenge.query
        .filter(
            LoginChallenge.token_hash == hash_token(token),
            LoginChallenge.verified_at.is_(None),
            LoginChallenge.expires_at > now,
        )
        .first()
    )


def resend_challenge(token: str):
    """
    Replaces the code in place (same token), restarts the TTL and sends the
    new code. The previous code stops verifying as soon as this commits.
    """
    now = clock.utcnow()
    max_resends = _cfg("CHALLENGE_MAX_RESENDS", 5)
    cooldown = _cfg("CHALLENGE_RESEND_COOLDOWN_SECONDS", 60)
    max_attempts = _max_attempts()

    try:
        challenge = _find_live(token, now)
        if challenge is None or challenge.resend_count >= max_resends or challenge.attempts >= max_attempts:
            return InvalidToken()

        next_allowed = challenge.last_sent_at + timedelta(seconds=cooldown)
        if cooldown and now < next_allowed:
            return ResendTooSoon(retry_after_seconds=max(int((next_allowed - now).total_seconds()), 1))

        code = generate_code()
        expires_at = now + _ttl()
        result = db.session.execute(
            update(LoginChallenge)
            .where(
                LoginChallenge.id == challenge.id,
                LoginChallenge.verified_at.is_(None),
                LoginChallenge.expires_at > now,
                LoginChallenge.resend_count < max_resends,
                LoginChallenge.attempts < max_attempts,
            )
            .values(
                code_hash=_hash_code(code),
                expires_at=expires_at,
                attempts=0,
                resend_count=LoginChallenge.resend_count + 1,
                last_sent_at=now,
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("resend failed")
        raise TransientStoreError("challenge not resent") from exc

    if (result.rowcount or 0) != 1:
        # verified or expired between the read and the write
        return InvalidToken()

    db.session.refresh(challenge)
    logger.info("challenge %s code resent (%d)", challenge.id, challenge.resend_count)
    email_sent = _deliver(challenge, code)
    publish(ChallengeResent(challenge_id=challenge.id, user_id=challenge.user_id, expires_at=expires_at))
    return Resent(email_sent=email_sent, expires_at=expires_at)


def verify_challenge(token: str, code: str):
    """
    Returns Verified, InvalidCode or ExpiredOrInvalidToken.

    Unknown, expired, already verified and attempt-exhausted tokens all give
    the same ExpiredOrInvalidToken.
    """
    now = clock.utcnow()
    max_attempts = _max_attempts()
    submitted_hash = _hash_code(code if isinstance(code, str) else "")

    try:
        challenge = _find_live(token, now)
        if challenge is None or challenge.attempts >= max_attempts:
            return ExpiredOrInvalidToken()

        if not hmac.compare_digest(submitted_hash, challenge.code_hash):
            db.session.execute(
                update(LoginChallenge)
                .where(LoginChallenge.id == challenge.id, LoginChallenge.verified_at.is_(None))
                .values(attempts=LoginChallenge.attempts + 1)
            )
            db.session.commit()
            db.session.refresh(challenge)
            logger.warning("wrong code for challenge %s (attempt %d)", challenge.id, challenge.attempts)
            return InvalidCode(remaining_attempts=max(max_attempts - challenge.attempts, 0))

        # code_hash in the WHERE clause: a resend that landed after our read wins
        result = db.session.execute(
            update(LoginChallenge)
            .where(
                LoginChallenge.id == challenge.id,
                LoginChallenge.verified_at.is_(None),
                LoginChallenge.code_hash == submitted_hash,
                LoginChallenge.expires_at > now,
                LoginChallenge.attempts < max_attempts,
            )
            .values(verified_at=now)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("verify failed")
        raise TransientStoreError("challenge not verified") from exc

    if (result.rowcount or 0) != 1:
        db.session.refresh(challenge)
        if challenge_state(challenge, now) != PENDING:
            return ExpiredOrInvalidToken()
        return InvalidCode(remaining_attempts=max(max_attempts - challenge.attempts, 0))

    fingerprint = Fingerprint.from_key(challenge.fingerprint)
    upsert_trusted_device(challenge.user_id, fingerprint)
    logger.info("challenge %s verified for user %s", challenge.id, challenge.user_id)
    publish(ChallengeVerified(
        challenge_id=challenge.id,
        user_id=challenge.user_id,
        fingerprint=fingerprint.key,
    ))
    return Verified(user_id=challenge.user_id, fingerprint=fingerprint.key)


def get_challenge(token: str):
    if not token:
        return None
    return LoginChallenge.query.filter_by(token_hash=hash_token(token)).first()


def list_challenges(user_id: int = None, pending_only: bool = False, limit: int = 100):
    now = clock.utcnow()
    q = LoginChallenge.query
    if user_id is not None:
        q = q.filter(LoginChallenge.user_id == user_id)
    if pending_only:
        q = q.filter(
            LoginChallenge.verified_at.is_(None),
            LoginChallenge.expires_at > now,
            LoginChallenge.attempts < _max_attempts(),
        )
    return q.order_by(LoginChallenge.created_at.desc(), LoginChallenge.id.desc()).limit(limit).all()


def purge_expired_challenges(now=None) -> int:
    now = now or clock.utcnow()
    result = db.session.execute(
        delete(LoginChallenge).where(
            LoginChallenge.verified_at.is_(None),
            LoginChallenge.expires_at <= now,
        )
    )
    db.session.commit()
    return result.rowcount or 0
