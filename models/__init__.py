from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .failed_attempt import FailedAttempt
from .account_lockout import AccountLockout
from .trusted_device import TrustedDevice
from .login_challenge import LoginChallenge
