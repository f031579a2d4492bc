from models.db import db

class FailedAttempt(db.Model):
    """
    Append-only ledger of failed logins. Rows are never updated; counts are
    always computed over a trailing window.
    """
    __tablename__ = "failed_login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    observed_at = db.Column(db.DateTime, nullable=False, index=True)

    __table_args__ = (
        db.Index("ix_failed_login_attempts_email_observed_at", "email", "observed_at"),
    )
