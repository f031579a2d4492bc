import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as storefront_guard.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "storefront_guard.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "storefront_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Sessions inactive for longer than this are purged
    SESSION_RETENTION_DAYS = int(os.getenv("SESSION_RETENTION_DAYS", "30"))

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _bool_env("SESSION_COOKIE_SECURE", "false")

    # Account lockout (failed attempts counted over a trailing window)
    LOCKOUT_THRESHOLD = int(os.getenv("LOCKOUT_THRESHOLD", "5"))
    LOCKOUT_WINDOW_SECONDS = int(os.getenv("LOCKOUT_WINDOW_SECONDS", "3600"))
    LOCKOUT_DURATION_SECONDS = int(os.getenv("LOCKOUT_DURATION_SECONDS", "1800"))
    LOCKOUT_ALERTS_ENABLED = _bool_env("LOCKOUT_ALERTS_ENABLED", "true")
    UNLOCK_ALERTS_ENABLED = _bool_env("UNLOCK_ALERTS_ENABLED", "true")

    # New-device login challenge
    SUSPICIOUS_LOGIN_DETECTION_ENABLED = _bool_env("SUSPICIOUS_LOGIN_DETECTION_ENABLED", "true")
    CHALLENGE_CODE_LENGTH = int(os.getenv("CHALLENGE_CODE_LENGTH", "6"))
    CHALLENGE_TTL_SECONDS = int(os.getenv("CHALLENGE_TTL_SECONDS", "900"))  # 15 minutes
    CHALLENGE_MAX_VERIFY_ATTEMPTS = int(os.getenv("CHALLENGE_MAX_VERIFY_ATTEMPTS", "5"))
    CHALLENGE_RESEND_COOLDOWN_SECONDS = int(os.getenv("CHALLENGE_RESEND_COOLDOWN_SECONDS", "60"))
    CHALLENGE_MAX_RESENDS = int(os.getenv("CHALLENGE_MAX_RESENDS", "5"))

    # Password policy for self-registration
    PASSWORD_MIN_LEN = 12

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Security Alert")
    SMTP_USE_TLS = _bool_env("SMTP_USE_TLS", "true")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SMTP_HOST = None
    CHALLENGE_RESEND_COOLDOWN_SECONDS = 0
