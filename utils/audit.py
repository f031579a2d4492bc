import json
import logging

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from utils.auth_context import client_ip

logger = logging.getLogger("storefront_guard.audit")


def log_event(action: str, user_id=None, email=None, metadata=None):
    ip = None
    user_agent = None
    if has_request_context():
        ip = client_ip()
        user_agent = request.headers.get("User-Agent", "")

    row = AuditLog(
        user_id=user_id,
        email=email,
        action=action,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        # audit failures never change the response
        db.session.rollback()
        logger.exception("audit event %s not written", action)
