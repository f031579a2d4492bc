import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.account_lockout import AccountLockout
from models.failed_attempt import FailedAttempt
from security.outcomes import LockoutDecision, LockoutStatus, TransientStoreError
from utils import clock
from utils.events import LockoutCreated, LockoutReleased, publish

logger = logging.getLogger("storefront_guard.lockout")

LOCKOUT_REASON = "Too many failed login attempts"


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _threshold() -> int:
    return int(current_app.config.get("LOCKOUT_THRESHOLD", 5))


def _window() -> timedelta:
    return timedelta(seconds=int(current_app.config.get("LOCKOUT_WINDOW_SECONDS", 3600)))


def _lock_duration() -> timedelta:
    return timedelta(seconds=int(current_app.config.get("LOCKOUT_DURATION_SECONDS", 1800)))


def count_recent_failures(email: str, now=None) -> int:
    """
    Failures for email inside the trailing window ending at now.
    Failures that already caused a lockout still count until they age out,
    so a failure right after expiry or a manual unlock locks again.
    """
    now = now or clock.utcnow()
    since = now - _window()
    return (
        db.session.query(func.count(FailedAttempt.id))
        .filter(FailedAttempt.email == email, FailedAttempt.observed_at >= since)
        .scalar()
    ) or 0


def record_failure(email: str, reason: str = None, ip: str = None, user_agent: str = None) -> int:
    """
    Appends a FailedAttempt and returns the failure count inside the window.
    Raises TransientStoreError if the ledger could not be written or read.
    """
    email = normalize_email(email)
    now = clock.utcnow()
    try:
        db.session.add(FailedAttempt(
            email=email,
            reason=(reason or "")[:255] or None,
            ip=ip,
            user_agent=user_agent[:255] if user_agent else None,
            observed_at=now,
        ))
        db.session.commit()
        return count_recent_failures(email, now)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("could not record failed login for %s", email)
        raise TransientStoreError("failed attempt not recorded") from exc


def _open_lockout(email: str):
    return AccountLockout.query.filter_by(open_email=email).first()


def evaluate_lockout(email: str, count: int, threshold: int = None, lock_duration: timedelta = None) -> LockoutDecision:
    """
    Opens a lockout when count reaches threshold. Concurrent callers that
    cross the threshold together get the same lockout back (created=False
    for all but one of them).
    """
    email = normalize_email(email)
    threshold = _threshold() if threshold is None else threshold
    lock_duration = _lock_duration() if lock_duration is None else lock_duration

    if count < threshold:
        return LockoutDecision(locked=False, remaining=threshold - count, failed_attempts=count)

    now = clock.utcnow()
    unlock_at = now + lock_duration
    try:
        # release the marker held by a lockout that has already ended
        db.session.execute(
            update(AccountLockout)
            .where(
                AccountLockout.open_email == email,
                or_(AccountLockout.unlock_at <= now, AccountLockout.is_manually_unlocked.is_(True)),
            )
            .values(open_email=None)
        )
        db.session.add(AccountLockout(
            email=email,
            reason=LOCKOUT_REASON,
            failed_attempts=count,
            created_at=now,
            unlock_at=unlock_at,
            open_email=email,
        ))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = _open_lockout(email)
        if existing is None:
            raise TransientStoreError("lockout marker conflict could not be resolved")
        logger.info("lockout for %s already opened by a concurrent attempt", email)
        return LockoutDecision(
            locked=True,
            unlock_at=existing.unlock_at,
            failed_attempts=existing.failed_attempts,
            created=False,
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("could not create lockout for %s", email)
        raise TransientStoreError("lockout not created") from exc

    logger.warning("account %s locked until %s after %d failed attempts", email, unlock_at.isoformat(), count)
    publish(LockoutCreated(email=email, unlock_at=unlock_at, failed_attempts=count))
    return LockoutDecision(locked=True, unlock_at=unlock_at, failed_attempts=count, created=True)


def is_locked(email: str) -> LockoutStatus:
    """
    Active = not manually unlocked and unlock_at still in the future.
    Must run before the credential check.
    """
    email = normalize_email(email)
    now = clock.utcnow()
    try:
        row = (
            AccountLockout.query
            .filter(
                AccountLockout.email == email,
                AccountLockout.is_manually_unlocked.is_(False),
                AccountLockout.unlock_at > now,
            )
            .order_by(AccountLockout.unlock_at.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("lockout lookup failed for %s", email)
        raise TransientStoreError("lockout status unavailable") from exc

    if row is None:
        return LockoutStatus(locked=False)
    return LockoutStatus(locked=True, unlock_at=row.unlock_at, failed_attempts=row.failed_attempts)


def manual_unlock(email: str, by: str = None) -> int:
    """
    Flags every active lockout for email as manually unlocked.
    Idempotent; returns how many lockouts were released.
    """
    email = normalize_email(email)
    now = clock.utcnow()
    try:
        result = db.session.execute(
            update(AccountLockout)
            .where(
                AccountLockout.email == email,
                AccountLockout.is_manually_unlocked.is_(False),
                AccountLockout.unlock_at > now,
            )
            .values(is_manually_unlocked=True, unlocked_by=by, unlocked_at=now, open_email=None)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("manual unlock failed for %s", email)
        raise TransientStoreError("unlock not applied") from exc

    released = result.rowcount or 0
    if released:
        logger.info("account %s manually unlocked by %s", email, by or "system")
        publish(LockoutReleased(email=email, released_by=by, lockouts=released))
    return released


def list_lockouts(active_only: bool = False, email: str = None, limit: int = 100):
    now = clock.utcnow()
    q = AccountLockout.query
    if email:
        q = q.filter(AccountLockout.email == normalize_email(email))
    if active_only:
        q = q.filter(AccountLockout.is_manually_unlocked.is_(False), AccountLockout.unlock_at > now)
    return q.order_by(AccountLockout.created_at.desc()).limit(limit).all()


def list_failed_attempts(email: str = None, limit: int = 100):
    q = FailedAttempt.query
    if email:
        q = q.filter(FailedAttempt.email == normalize_email(email))
    return q.order_by(FailedAttempt.observed_at.desc(), FailedAttempt.id.desc()).limit(limit).all()
