from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from models import db
from models.user import Role, User
from security import login_flow
from security.bruteforce import normalize_email
from security.csrf import issue_csrf_token
from security.outcomes import (
    ChallengeRequired,
    CredentialVerifierError,
    ExpiredOrInvalidToken,
    InvalidCode,
    InvalidCredentials,
    InvalidToken,
    LockedError,
    ResendTooSoon,
    TransientStoreError,
)
from security.password import hash_password
from security.rbac import has_role, role_names
from security.session import (
    list_sessions,
    list_trusted_devices,
    remove_trusted_device,
    revoke_all_sessions,
    revoke_session,
    revoke_session_token,
)
from utils import clock
from utils.audit import log_event
from utils.auth_context import client_ip, device_signals, login_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

SERVICE_UNAVAILABLE = "Sign-in is temporarily unavailable. Please try again in a moment."


def _iso(value):
    return value.isoformat() + "Z" if value else None


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _unavailable():
    return jsonify(error=SERVICE_UNAVAILABLE, retry=True), 503


def _locked_response(result: LockedError):
    now = clock.utcnow()
    if result.newly_locked:
        message = "Too many failed attempts. Your account is now locked. A notification email has been sent."
    else:
        message = "Account temporarily locked after too many failed login attempts. Try again after the unlock time."
    return jsonify(
        error=message,
        locked=True,
        unlock_at=_iso(result.unlock_at),
        retry_after_seconds=result.seconds_remaining(now),
    ), 423


def _session_response(message: str, raw_token: str, status: int = 200, **extra):
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
    max_age = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    resp = jsonify(message=message, **extra)
    resp.set_cookie(
        cookie_name,
        raw_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=max_age,
        path="/",
    )
    return issue_csrf_token(resp), status


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""
    full_name = (data.get("full_name") or "").strip() or None

    if not _is_valid_email(email):
        return jsonify(error="Invalid email"), 400
    min_len = current_app.config.get("PASSWORD_MIN_LEN", 12)
    if not isinstance(password, str) or len(password) < min_len:
        return jsonify(error=f"Password must be at least {min_len} characters"), 400

    if User.query.filter_by(email=email).first():
        log_event("REGISTER_FAIL_EMAIL_EXISTS", email=email)
        return jsonify(error="Email already registered"), 409

    user = User(email=email, password_hash=hash_password(password), full_name=full_name)
    customer_role = Role.query.filter_by(name="CUSTOMER").first() or Role(name="CUSTOMER")
    user.roles.append(customer_role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Email already registered"), 409

    log_event("REGISTER_SUCCESS", user_id=user.id, email=email)
    return jsonify(message="Registered successfully"), 201


@auth_bp.post("/lockout_status")
def lockout_status():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))
    if not email:
        return jsonify(error="email is required"), 400

    try:
        status = login_flow.check_lockout(email)
    except TransientStoreError:
        return _unavailable()

    return jsonify(
        locked=status.locked,
        unlock_at=_iso(status.unlock_at),
        retry_after_seconds=status.seconds_remaining(clock.utcnow()),
    ), 200


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not email:
        return jsonify(error="Invalid credentials"), 401

    try:
        result = login_flow.attempt_login(email, password, device_signals(), ip=client_ip())
    except (TransientStoreError, CredentialVerifierError):
        log_event("LOGIN_UNAVAILABLE", email=email)
        return _unavailable()

    if isinstance(result, LockedError):
        log_event("LOGIN_LOCKED", email=email, metadata={
            "unlock_at": _iso(result.unlock_at),
            "newly_locked": result.newly_locked,
        })
        return _locked_response(result)

    if isinstance(result, InvalidCredentials):
        log_event("LOGIN_FAIL", email=email, metadata={"remaining": result.remaining})
        if result.remaining is None:
            return jsonify(error="Invalid credentials"), 401
        return jsonify(error="Invalid credentials", remaining_attempts=result.remaining), 401

    if isinstance(result, ChallengeRequired):
        log_event("LOGIN_CHALLENGE", email=email, metadata={"reason": result.reason, "email_sent": result.email_sent})
        return jsonify(
            message="Please verify your login with the code sent to your email",
            verification_required=True,
            verification_token=result.token,
            reason=result.reason,
            email_sent=result.email_sent,
            expires_at=_iso(result.expires_at),
        ), 202

    log_event("LOGIN_SUCCESS", user_id=result.user_id, email=email, metadata={
        "trusted_by_default": result.trusted_by_default,
    })
    return _session_response("Login OK", result.session_token)


@auth_bp.post("/verify_login")
def verify_login():
    data = request.get_json(silent=True) or {}
    token = data.get("token")
    code = data.get("code")

    if not token or code is None or code == "":
        return jsonify(error="Missing verification token or code"), 400
    # a JSON number would lose leading zeros
    if not isinstance(token, str) or not isinstance(code, str):
        return jsonify(error="Verification token and code must be sent as strings"), 400

    try:
        result = login_flow.verify_login_challenge(
            token, code, ip=client_ip(), user_agent=request.headers.get("User-Agent")
        )
    except TransientStoreError:
        return _unavailable()

    if isinstance(result, InvalidCode):
        log_event("LOGIN_VERIFY_FAIL", metadata={"remaining_attempts": result.remaining_attempts})
        return jsonify(
            verified=False,
            error="Invalid verification code. Check the code in your email or request a new one.",
            remaining_attempts=result.remaining_attempts,
        ), 400

    if isinstance(result, ExpiredOrInvalidToken):
        log_event("LOGIN_VERIFY_EXPIRED")
        return jsonify(verified=False, error="Invalid or expired verification token. Please sign in again."), 400

    log_event("LOGIN_VERIFIED", user_id=result.user_id, metadata={"fingerprint": result.fingerprint})
    return _session_response("Login verified successfully", result.session_token, verified=True)


@auth_bp.post("/resend_code")
def resend_code():
    data = request.get_json(silent=True) or {}
    token = data.get("token") or ""
    if not token:
        return jsonify(error="Missing verification token"), 400
    if not isinstance(token, str):
        return jsonify(error="Verification token must be sent as a string"), 400

    try:
        result = login_flow.resend_login_challenge(token)
    except TransientStoreError:
        return _unavailable()

    if isinstance(result, InvalidToken):
        return jsonify(error="Invalid verification token. Please sign in again."), 400
    if isinstance(result, ResendTooSoon):
        return jsonify(
            error="Please wait before requesting another code.",
            retry_after_seconds=result.retry_after_seconds,
        ), 429

    log_event("LOGIN_CODE_RESENT", metadata={"email_sent": result.email_sent})
    return jsonify(success=True, email_sent=result.email_sent, expires_at=_iso(result.expires_at)), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        roles=sorted(role_names(g.user)),
        is_admin=has_role(g.user, "ADMIN"),
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
    revoke_session_token(request.cookies.get(cookie_name))
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(message="Logged out")
    resp.delete_cookie(cookie_name, path="/")
    return resp, 200


@auth_bp.post("/logout_all")
@login_required
def logout_all():
    """
    Revokes every other session; the current one stays signed in.
    """
    count = revoke_all_sessions(g.user.id, except_session_id=g.session.id)
    log_event("LOGOUT_ALL", user_id=g.user.id, metadata={"revoked_sessions": count})
    return jsonify(message="Signed out of all other sessions", revoked_sessions=count), 200


@auth_bp.get("/sessions")
@login_required
def my_sessions():
    out = []
    for s in list_sessions(g.user.id):
        out.append({
            "id": s.id,
            "browser": s.browser_family,
            "os": s.os_family,
            "device": s.device_class,
            "is_trusted": s.is_trusted,
            "is_current": s.id == g.session.id,
            "ip": s.ip,
            "created_at": _iso(s.created_at),
            "last_active_at": _iso(s.last_active_at),
        })
    return jsonify(sessions=out), 200


@auth_bp.post("/sessions/<int:session_id>/revoke")
@login_required
def revoke_one_session(session_id: int):
    if not revoke_session(g.user.id, session_id):
        return jsonify(error="Session not found"), 404
    log_event("SESSION_REVOKE", user_id=g.user.id, metadata={"session_id": session_id})
    return jsonify(message="Session revoked"), 200


@auth_bp.get("/devices")
@login_required
def my_devices():
    devices = [{
        "id": d.id,
        "browser": d.browser_family,
        "os": d.os_family,
        "device": d.device_class,
        "trusted_at": _iso(d.trusted_at),
        "last_used_at": _iso(d.last_used_at),
    } for d in list_trusted_devices(g.user.id)]
    return jsonify(devices=devices), 200


@auth_bp.post("/devices/<int:device_id>/remove")
@login_required
def remove_device(device_id: int):
    if not remove_trusted_device(g.user.id, device_id):
        return jsonify(error="Device not found"), 404
    log_event("TRUSTED_DEVICE_REMOVE", user_id=g.user.id, metadata={"device_id": device_id})
    return jsonify(message="Device removed"), 200
