from functools import wraps
from flask import current_app, g, jsonify, request
from security.session import get_session_by_token
from models import db
from models.user import User


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    return request.remote_addr or "unknown"


def device_signals() -> dict:
    """
    Device hints for fingerprinting: the client may send browser / os /
    device / is_mobile in the JSON body under "device"; the raw User-Agent
    header is always included.
    """
    data = request.get_json(silent=True) or {}
    reported = data.get("device") if isinstance(data.get("device"), dict) else {}
    return {
        "user_agent": request.headers.get("User-Agent", ""),
        "browser": reported.get("browser"),
        "os": reported.get("os"),
        "device": reported.get("device"),
        "is_mobile": reported.get("is_mobile"),
    }


def load_current_user():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
    sess = get_session_by_token(request.cookies.get(cookie_name))
    if not sess:
        g.user = None
        g.session = None
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
