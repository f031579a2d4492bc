import hmac
import secrets
from flask import current_app, g, jsonify, request

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

# requests that start or resume a login carry no session yet
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/auth/verify_login",
    "/auth/resend_code",
    "/auth/lockout_status",
    "/health",
}


def issue_csrf_token(resp):
    resp.set_cookie(
        CSRF_COOKIE,
        secrets.token_urlsafe(32),
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp


def csrf_protect():
    """
    Double-submit check for state-changing requests made with a session
    cookie. Registered as a before_request hook.
    """
    if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return None
    if request.path in CSRF_EXEMPT_PATHS or getattr(g, "user", None) is None:
        return None

    cookie_token = request.cookies.get(CSRF_COOKIE) or ""
    header_token = request.headers.get(CSRF_HEADER) or ""
    if not cookie_token or not hmac.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None
