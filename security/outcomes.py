"""
Result and error types for the account-protection flow.

Every lockout / challenge decision is returned as one of these values so
callers branch on the type. Exceptions are reserved for infrastructure
failures (store, verifier, notifier) that must never be read as a security
decision.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class TransientStoreError(Exception):
    """The durable store could not be read or written. Deny and retry."""


class CredentialVerifierError(Exception):
    """The credential verifier could not give an answer. Deny and retry."""


class NotifierError(Exception):
    pass


@dataclass(frozen=True)
class LockoutDecision:
    locked: bool
    unlock_at: Optional[datetime] = None
    remaining: int = 0
    failed_attempts: int = 0
    # False when a concurrent request already opened this lockout
    created: bool = False


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    unlock_at: Optional[datetime] = None
    failed_attempts: int = 0

    def seconds_remaining(self, now: datetime) -> int:
        if not self.locked or self.unlock_at is None:
            return 0
        return max(int((self.unlock_at - now).total_seconds()), 1)


# -- login outcomes ---------------------------------------------------------

@dataclass(frozen=True)
class Allowed:
    user_id: int
    session_token: str
    session_id: int
    trusted_by_default: bool = False


@dataclass(frozen=True)
class LockedError:
    unlock_at: datetime
    failed_attempts: int = 0
    newly_locked: bool = False

    def seconds_remaining(self, now: datetime) -> int:
        return max(int((self.unlock_at - now).total_seconds()), 1)


@dataclass(frozen=True)
class InvalidCredentials:
    # None when the failure could not be counted (store error)
    remaining: Optional[int] = None


@dataclass(frozen=True)
class ChallengeRequired:
    token: str
    reason: str
    email_sent: bool
    expires_at: datetime


# -- challenge outcomes -----------------------------------------------------

@dataclass(frozen=True)
class IssuedChallenge:
    token: str
    challenge_id: int
    expires_at: datetime
    email_sent: bool
    reason: str


@dataclass(frozen=True)
class Verified:
    user_id: int
    fingerprint: str
    session_token: Optional[str] = None
    session_id: Optional[int] = None


@dataclass(frozen=True)
class InvalidCode:
    remaining_attempts: int = 0


@dataclass(frozen=True)
class ExpiredOrInvalidToken:
    pass


@dataclass(frozen=True)
class Resent:
    email_sent: bool
    expires_at: datetime


@dataclass(frozen=True)
class InvalidToken:
    pass


@dataclass(frozen=True)
class ResendTooSoon:
    retry_after_seconds: int
