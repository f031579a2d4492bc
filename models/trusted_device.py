from models.db import db

class TrustedDevice(db.Model):
    __tablename__ = "trusted_devices"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # "Browser|OS|DeviceClass" lookup key, see security.fingerprint
    fingerprint = db.Column(db.String(128), nullable=False)

    browser_family = db.Column(db.String(32), nullable=False)
    os_family = db.Column(db.String(32), nullable=False)
    device_class = db.Column(db.String(16), nullable=False)

    trusted_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "fingerprint", name="uq_trusted_devices_user_fingerprint"),
    )
