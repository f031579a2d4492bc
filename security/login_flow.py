"""
Login orchestration: lockout gate -> credential check -> device trust ->
challenge. The entry points here are what the HTTP routes (and any other
transport) call; they hold no state of their own and take everything they
need as arguments.
"""
import dataclasses
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models.user import User
from security import challenge as challenges
from security.bruteforce import evaluate_lockout, is_locked, manual_unlock, normalize_email, record_failure
from security.fingerprint import Fingerprint, classify, has_any_sessions, is_known
from security.outcomes import (
    Allowed,
    ChallengeRequired,
    InvalidCredentials,
    LockedError,
    LockoutStatus,
    NotifierError,
    TransientStoreError,
    Verified,
)
from security.session import create_session, touch_trusted_device, upsert_trusted_device

logger = logging.getLogger("storefront_guard.login")


def _notify(destination: str, payload: dict) -> bool:
    try:
        return bool(current_app.extensions["notifier"].send(destination, payload))
    except NotifierError:
        logger.exception("%s to %s failed", payload.get("kind"), destination)
        return False


def _find_user(email: str):
    try:
        return User.query.filter_by(email=email).first()
    except SQLAlchemyError as exc:
        raise TransientStoreError("user lookup failed") from exc


def check_lockout(email: str) -> LockoutStatus:
    return is_locked(email)


def _handle_failure(email: str, fingerprint, ip: str, user_agent: str):
    try:
        count = record_failure(email, reason="Invalid credentials", ip=ip, user_agent=user_agent)
        decision = evaluate_lockout(email, count)
    except TransientStoreError:
        # not counted this time; the next attempt re-evaluates from the ledger
        logger.warning("failed login for %s could not be counted", email)
        return InvalidCredentials(remaining=None)

    if not decision.locked:
        return InvalidCredentials(remaining=decision.remaining)

    if decision.created and current_app.config.get("LOCKOUT_ALERTS_ENABLED", True):
        if _find_user(email) is not None:
            _notify(email, {
                "kind": "lockout_alert",
                "failed_attempts": decision.failed_attempts,
                "unlock_at": decision.unlock_at.strftime("%Y-%m-%d %H:%M"),
                "device": fingerprint.describe(),
            })
    return LockedError(
        unlock_at=decision.unlock_at,
        failed_attempts=decision.failed_attempts,
        newly_locked=decision.created,
    )


def _allow(user, fingerprint, ip, user_agent, trusted_by_default=False) -> Allowed:
    raw_token, sess = create_session(user.id, fingerprint, trusted=True, ip=ip, user_agent=user_agent)
    return Allowed(
        user_id=user.id,
        session_token=raw_token,
        session_id=sess.id,
        trusted_by_default=trusted_by_default,
    )


def attempt_login(email: str, secret: str, device_signals: dict, ip: str = None):
    """
    Returns Allowed, LockedError, InvalidCredentials or ChallengeRequired.

    Raises TransientStoreError / CredentialVerifierError when a decision
    cannot be made; callers must deny and let the user retry.
    """
    email = normalize_email(email)
    device_signals = device_signals or {}
    user_agent = device_signals.get("user_agent")

    status = is_locked(email)
    if status.locked:
        logger.info("login for %s rejected: locked until %s", email, status.unlock_at.isoformat())
        return LockedError(unlock_at=status.unlock_at, failed_attempts=status.failed_attempts)

    verifier = current_app.extensions["credential_verifier"]
    fingerprint = classify(device_signals)

    if not verifier.verify(email, secret):
        return _handle_failure(email, fingerprint, ip, user_agent)

    user = _find_user(email)
    if user is None:
        # verifier and users table disagree; never let that through
        logger.error("verifier accepted %s but no user row exists", email)
        return _handle_failure(email, fingerprint, ip, user_agent)

    if not has_any_sessions(user.id):
        upsert_trusted_device(user.id, fingerprint)
        logger.info("first login for user %s, trusting %s", user.id, fingerprint.key)
        return _allow(user, fingerprint, ip, user_agent, trusted_by_default=True)

    if is_known(user.id, fingerprint):
        touch_trusted_device(user.id, fingerprint)
        return _allow(user, fingerprint, ip, user_agent)

    if not current_app.config.get("SUSPICIOUS_LOGIN_DETECTION_ENABLED", True):
        raw_token, sess = create_session(user.id, fingerprint, trusted=False, ip=ip, user_agent=user_agent)
        return Allowed(user_id=user.id, session_token=raw_token, session_id=sess.id)

    issued = challenges.issue_challenge(
        user.id,
        user.email,
        fingerprint,
        display_name=user.display_name,
        ip=ip,
        user_agent=user_agent,
    )
    return ChallengeRequired(
        token=issued.token,
        reason=issued.reason,
        email_sent=issued.email_sent,
        expires_at=issued.expires_at,
    )


def verify_login_challenge(token: str, code: str, ip: str = None, user_agent: str = None):
    """
    Verified (carrying a fresh trusted session), InvalidCode or
    ExpiredOrInvalidToken.
    """
    result = challenges.verify_challenge(token, code)
    if not isinstance(result, Verified):
        return result

    fingerprint = Fingerprint.from_key(result.fingerprint)
    raw_token, sess = create_session(result.user_id, fingerprint, trusted=True, ip=ip, user_agent=user_agent)
    return dataclasses.replace(result, session_token=raw_token, session_id=sess.id)


def resend_login_challenge(token: str):
    """
    Resent, InvalidToken or ResendTooSoon.
    """
    return challenges.resend_challenge(token)


def unlock_account(email: str, by: str = None) -> int:
    email = normalize_email(email)
    released = manual_unlock(email, by=by)
    if released and current_app.config.get("UNLOCK_ALERTS_ENABLED", True):
        if _find_user(email) is not None:
            _notify(email, {"kind": "unlock_alert", "automatic": False, "by": by})
    return released
