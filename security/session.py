import hashlib
import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.session import Session
from models.trusted_device import TrustedDevice
from security.outcomes import TransientStoreError
from utils import clock

logger = logging.getLogger("storefront_guard.session")


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, fingerprint=None, trusted: bool = False, ip: str = None, user_agent: str = None):
    """
    Creates a server-side session and returns (raw_token, session).
    Only the hash is stored in DB; the raw token goes into the cookie.
    """
    raw_token = secrets.token_urlsafe(32)
    now = clock.utcnow()
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)

    row = Session(
        user_id=user_id,
        token_hash=hash_token(raw_token),
        fingerprint=fingerprint.key if fingerprint else None,
        browser_family=fingerprint.browser_family if fingerprint else None,
        os_family=fingerprint.os_family if fingerprint else None,
        device_class=fingerprint.device_class if fingerprint else None,
        is_trusted=trusted,
        created_at=now,
        last_active_at=now,
        expires_at=now + timedelta(seconds=lifetime),
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("could not create session for user %s", user_id)
        raise TransientStoreError("session not created") from exc
    return raw_token, row


def get_session_by_token(raw_token: str):
    if not raw_token:
        return None

    now = clock.utcnow()
    sess = (
        Session.query
        .filter_by(token_hash=hash_token(raw_token), revoked=False)
        .first()
    )
    if not sess:
        return None

    # Absolute expiry
    if sess.expires_at <= now:
        return None

    # Idle timeout
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    last_seen = sess.last_active_at or sess.created_at
    if (last_seen + timedelta(seconds=idle_seconds)) <= now:
        return None

    sess.last_active_at = now
    db.session.commit()
    return sess


def list_sessions(user_id: int):
    return (
        Session.query
        .filter_by(user_id=user_id, revoked=False)
        .order_by(Session.last_active_at.desc(), Session.id.desc())
        .all()
    )


def _revoke_where(*criteria) -> int:
    now = clock.utcnow()
    try:
        result = db.session.execute(
            update(Session)
            .where(Session.revoked.is_(False), *criteria)
            .values(revoked=True, revoked_at=now)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientStoreError("session revoke failed") from exc
    return result.rowcount or 0


def revoke_session(user_id: int, session_id: int) -> bool:
    return _revoke_where(Session.user_id == user_id, Session.id == session_id) > 0


def revoke_session_token(raw_token: str) -> bool:
    if not raw_token:
        return False
    return _revoke_where(Session.token_hash == hash_token(raw_token)) > 0


def revoke_all_sessions(user_id: int, except_session_id: int = None) -> int:
    criteria = [Session.user_id == user_id]
    if except_session_id is not None:
        criteria.append(Session.id != except_session_id)
    count = _revoke_where(*criteria)
    logger.info("revoked %d sessions for user %s", count, user_id)
    return count


def upsert_trusted_device(user_id: int, fingerprint) -> TrustedDevice:
    """
    Idempotent trust promotion for (user_id, fingerprint). Live sessions on
    the same fingerprint are flagged trusted as well.
    """
    now = clock.utcnow()
    try:
        device = TrustedDevice.query.filter_by(user_id=user_id, fingerprint=fingerprint.key).first()
        if device is None:
            device = TrustedDevice(
                user_id=user_id,
                fingerprint=fingerprint.key,
                browser_family=fingerprint.browser_family,
                os_family=fingerprint.os_family,
                device_class=fingerprint.device_class,
                trusted_at=now,
                last_used_at=now,
            )
            db.session.add(device)
            try:
                db.session.flush()
            except IntegrityError:
                # a concurrent promotion won; use its row
                db.session.rollback()
                device = TrustedDevice.query.filter_by(user_id=user_id, fingerprint=fingerprint.key).one()
                device.last_used_at = now
        else:
            device.last_used_at = now

        db.session.execute(
            update(Session)
            .where(Session.user_id == user_id, Session.fingerprint == fingerprint.key, Session.revoked.is_(False))
            .values(is_trusted=True)
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("trusted device upsert failed for user %s", user_id)
        raise TransientStoreError("trusted device not saved") from exc

    logger.info("device %s trusted for user %s", fingerprint.key, user_id)
    return device


def touch_trusted_device(user_id: int, fingerprint) -> None:
    try:
        db.session.execute(
            update(TrustedDevice)
            .where(TrustedDevice.user_id == user_id, TrustedDevice.fingerprint == fingerprint.key)
            .values(last_used_at=clock.utcnow())
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("could not update last_used_at for user %s", user_id)


def list_trusted_devices(user_id: int):
    return (
        TrustedDevice.query
        .filter_by(user_id=user_id)
        .order_by(TrustedDevice.trusted_at.desc())
        .all()
    )


def remove_trusted_device(user_id: int, device_id: int) -> bool:
    """
    Removes trust; the next login from that fingerprint is challenged again.
    """
    device = TrustedDevice.query.filter_by(id=device_id, user_id=user_id).first()
    if not device:
        return False
    db.session.execute(
        update(Session)
        .where(Session.user_id == user_id, Session.fingerprint == device.fingerprint)
        .values(is_trusted=False)
    )
    db.session.delete(device)
    db.session.commit()
    logger.info("trusted device %s removed for user %s", device_id, user_id)
    return True


def purge_stale_sessions(now=None) -> int:
    now = now or clock.utcnow()
    retention_days = current_app.config.get("SESSION_RETENTION_DAYS", 30)
    cutoff = now - timedelta(days=retention_days)
    result = db.session.execute(
        delete(Session).where(func.coalesce(Session.last_active_at, Session.created_at) < cutoff)
    )
    db.session.commit()
    return result.rowcount or 0
