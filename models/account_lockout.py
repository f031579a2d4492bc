from models.db import db

class AccountLockout(db.Model):
    __tablename__ = "account_lockouts"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    failed_attempts = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False)
    unlock_at = db.Column(db.DateTime, nullable=False)

    is_manually_unlocked = db.Column(db.Boolean, default=False, nullable=False)
    unlocked_by = db.Column(db.String(255), nullable=True)
    unlocked_at = db.Column(db.DateTime, nullable=True)

    # Holds the email while this lockout is the open one for the account and
    # NULL once it is released. The unique index makes concurrent
    # threshold-crossings collapse into a single row (NULLs never collide).
    open_email = db.Column(db.String(255), nullable=True, unique=True)

    def is_active(self, now) -> bool:
        return not self.is_manually_unlocked and now < self.unlock_at
