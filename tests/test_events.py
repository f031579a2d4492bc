from datetime import datetime

from utils.events import ChallengeIssued, EventBus, LockoutCreated, LockoutReleased, publish


def test_subscribers_receive_matching_events():
    bus = EventBus()
    everything, lockouts = [], []
    bus.subscribe(everything.append)
    bus.subscribe(lockouts.append, LockoutCreated)

    created = LockoutCreated(email="bob@x.com", unlock_at=datetime(2026, 1, 1), failed_attempts=5)
    released = LockoutReleased(email="bob@x.com", released_by=None, lockouts=1)
    bus.publish(created)
    bus.publish(released)

    assert everything == [created, released]
    assert lockouts == [created]


def test_failing_subscriber_is_skipped(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise ValueError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    event = ChallengeIssued(challenge_id=1, user_id=2, fingerprint="a|b|c", expires_at=datetime(2026, 1, 1))
    bus.publish(event)

    assert seen == [event]
    assert "event subscriber failed" in caplog.text


def test_module_publish_uses_the_app_bus(app, events):
    event = LockoutReleased(email="bob@x.com", released_by="cli", lockouts=1)
    publish(event)
    assert events == [event]
