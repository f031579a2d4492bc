from models.db import db


class LoginChallenge(db.Model):
    __tablename__ = "login_challenges"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)

    # only hashes are stored; the raw token goes to the client and the raw
    # code goes out through the notifier
    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)
    code_hash = db.Column(db.String(128), nullable=False)

    fingerprint = db.Column(db.String(128), nullable=False)
    browser_family = db.Column(db.String(32), nullable=False)
    os_family = db.Column(db.String(32), nullable=False)
    device_class = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    verified_at = db.Column(db.DateTime, nullable=True)

    attempts = db.Column(db.Integer, default=0, nullable=False)
    resend_count = db.Column(db.Integer, default=0, nullable=False)
    last_sent_at = db.Column(db.DateTime, nullable=False)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
