"""
Domain events for dashboards and audit consumers.

The account-protection code publishes; it never reads anything back from a
subscriber. A failing subscriber is logged and skipped so that a broken
dashboard can never change a lockout or challenge decision.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

logger = logging.getLogger("storefront_guard.events")


@dataclass(frozen=True)
class LockoutCreated:
    email: str
    unlock_at: datetime
    failed_attempts: int


@dataclass(frozen=True)
class LockoutReleased:
    email: str
    released_by: Optional[str]
    lockouts: int


@dataclass(frozen=True)
class ChallengeIssued:
    challenge_id: int
    user_id: int
    fingerprint: str
    expires_at: datetime


@dataclass(frozen=True)
class ChallengeResent:
    challenge_id: int
    user_id: int
    expires_at: datetime


@dataclass(frozen=True)
class ChallengeVerified:
    challenge_id: int
    user_id: int
    fingerprint: str


class EventBus:
    def __init__(self):
        self._subscribers: list[tuple[Optional[type], Callable]] = []

    def subscribe(self, handler: Callable, event_type: Optional[type] = None) -> None:
        """
        Register handler for one event type, or for every event when
        event_type is None.
        """
        self._subscribers.append((event_type, handler))

    def publish(self, event) -> None:
        for event_type, handler in list(self._subscribers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("event subscriber failed for %s", type(event).__name__)


def publish(event) -> None:
    bus = current_app.extensions.get("events")
    if bus is not None:
        bus.publish(event)
