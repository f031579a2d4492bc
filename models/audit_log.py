from models.db import db
from utils.clock import utcnow

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # nullable for unauth events
    email = db.Column(db.String(255), nullable=True, index=True)
    action = db.Column(db.String(80), nullable=False)  # e.g. LOGIN_FAIL, ACCOUNT_UNLOCK

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
