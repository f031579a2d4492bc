import logging
from functools import wraps

from flask import g, jsonify, request

from utils.audit import log_event

logger = logging.getLogger("storefront_guard.rbac")


def role_names(user) -> set:
    if not user:
        return set()
    return {r.name for r in user.roles}


def has_role(user, role_name: str) -> bool:
    return role_name in role_names(user)


def require_roles(*required: str):
    """
    Usage: @require_roles("ADMIN")

    401 without a session, 403 when the user holds none of the roles.
    Refusals are written to the audit log.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return jsonify(error="Authentication required"), 401

            if not role_names(user).intersection(required):
                logger.warning("user %s denied %s %s", user.id, request.method, request.path)
                log_event("ACCESS_DENIED", user_id=user.id, email=user.email, metadata={
                    "path": request.path,
                    "required": list(required),
                })
                return jsonify(error="Forbidden"), 403

            return fn(*args, **kwargs)
        return wrapper
    return decorator
