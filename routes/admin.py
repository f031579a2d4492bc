from flask import Blueprint, g, jsonify, request

from models.audit_log import AuditLog
from security import login_flow
from security.bruteforce import list_failed_attempts, list_lockouts, normalize_email
from security.challenge import challenge_state, list_challenges
from security.outcomes import TransientStoreError
from security.rbac import require_roles
from utils import clock
from utils.audit import log_event

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


def _iso(value):
    return value.isoformat() + "Z" if value else None


def _limit(default: int = 100, maximum: int = 500) -> int:
    limit = request.args.get("limit", type=int) or default
    return max(1, min(limit, maximum))


@admin_bp.get("/lockouts")
@require_roles("ADMIN")
def admin_lockouts():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    email = request.args.get("email")
    now = clock.utcnow()

    rows = list_lockouts(active_only=active_only, email=email, limit=_limit())
    log_event("ADMIN_LOCKOUTS_VIEW", user_id=g.user.id)
    return jsonify(lockouts=[{
        "id": r.id,
        "email": r.email,
        "reason": r.reason,
        "failed_attempts": r.failed_attempts,
        "created_at": _iso(r.created_at),
        "unlock_at": _iso(r.unlock_at),
        "active": r.is_active(now),
        "is_manually_unlocked": r.is_manually_unlocked,
        "unlocked_by": r.unlocked_by,
        "unlocked_at": _iso(r.unlocked_at),
    } for r in rows]), 200


@admin_bp.post("/lockouts/unlock")
@require_roles("ADMIN")
def admin_unlock():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))
    if not email:
        return jsonify(error="email is required"), 400

    try:
        released = login_flow.unlock_account(email, by=g.user.email)
    except TransientStoreError:
        return jsonify(error="Unlock is temporarily unavailable, try again"), 503

    log_event("ACCOUNT_UNLOCK", user_id=g.user.id, email=email, metadata={"released": released})
    if not released:
        return jsonify(message="Account was not locked", released=0), 200
    return jsonify(message="Account unlocked", released=released), 200


@admin_bp.get("/failed_attempts")
@require_roles("ADMIN")
def admin_failed_attempts():
    rows = list_failed_attempts(email=request.args.get("email"), limit=_limit())
    return jsonify(failed_attempts=[{
        "id": r.id,
        "email": r.email,
        "reason": r.reason,
        "ip": r.ip,
        "user_agent": r.user_agent,
        "observed_at": _iso(r.observed_at),
    } for r in rows]), 200


@admin_bp.get("/challenges")
@require_roles("ADMIN")
def admin_challenges():
    pending_only = request.args.get("pending", "").lower() in ("1", "true", "yes")
    user_id = request.args.get("user_id", type=int)
    now = clock.utcnow()

    rows = list_challenges(user_id=user_id, pending_only=pending_only, limit=_limit())
    # hashes never leave the server
    return jsonify(challenges=[{
        "id": c.id,
        "user_id": c.user_id,
        "email": c.email,
        "state": challenge_state(c, now),
        "reason": c.reason,
        "browser": c.browser_family,
        "os": c.os_family,
        "device": c.device_class,
        "attempts": c.attempts,
        "resend_count": c.resend_count,
        "ip": c.ip,
        "created_at": _iso(c.created_at),
        "expires_at": _iso(c.expires_at),
        "verified_at": _iso(c.verified_at),
    } for c in rows]), 200


@admin_bp.get("/audit-logs")
@require_roles("ADMIN")
def admin_audit_logs():
    action = request.args.get("action")
    user_id = request.args.get("user_id", type=int)
    email = request.args.get("email")

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)
    if email:
        q = q.filter(AuditLog.email == normalize_email(email))

    rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(_limit(200)).all()
    return jsonify([{
        "id": r.id,
        "created_at": _iso(r.created_at),
        "user_id": r.user_id,
        "email": r.email,
        "action": r.action,
        "ip": r.ip,
        "user_agent": r.user_agent,
        "metadata": r.metadata_json,
    } for r in rows]), 200
