"""
tests/conftest.py -- shared fixtures.

Every test gets a fresh app on an in-memory SQLite database, a fake
credential verifier, a notifier that records what it was asked to send,
and a controllable clock. Nothing here talks to SMTP or bcrypt unless a
test asks for it.
"""
from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.user import Role, User
from security.outcomes import CredentialVerifierError, NotifierError
from utils import clock

T0 = datetime(2026, 3, 2, 9, 0, 0)

CHROME_WINDOWS = {"browser": "Chrome", "os": "Windows", "device": "Desktop"}
FIREFOX_MAC = {"browser": "Firefox", "os": "macOS", "device": "Desktop"}


class FakeVerifier:
    """verify() succeeds only for the passwords registered with set()."""

    def __init__(self):
        self.passwords = {}
        self.calls = []
        self.error = None

    def set(self, email, password):
        self.passwords[email] = password

    def verify(self, identifier, secret):
        self.calls.append(identifier)
        if self.error is not None:
            raise CredentialVerifierError(self.error)
        return self.passwords.get(identifier) == secret


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.deliver = True
        self.error = None

    def send(self, destination, payload):
        if self.error is not None:
            raise NotifierError(self.error)
        self.sent.append((destination, dict(payload)))
        return self.deliver

    def of_kind(self, kind):
        return [p for _, p in self.sent if p.get("kind") == kind]

    def last_code(self):
        codes = self.of_kind("login_challenge")
        assert codes, "no challenge was sent"
        return codes[-1]["code"]


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value):
        self.now = value
        return self.now


@pytest.fixture()
def frozen_clock(monkeypatch):
    fake = FakeClock(T0)
    monkeypatch.setattr(clock, "utcnow", fake)
    return fake


@pytest.fixture()
def verifier():
    return FakeVerifier()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def app(frozen_clock, verifier, notifier):
    app = create_app(TestConfig, credential_verifier=verifier, notifier=notifier)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def events(app):
    seen = []
    app.extensions["events"].subscribe(seen.append)
    return seen


@pytest.fixture()
def make_user(app, verifier):
    def _make(email="u1@example.com", password="correct horse battery", roles=()):
        user = User(email=email, password_hash="not-used-by-fake-verifier", full_name=None)
        for name in roles:
            role = Role.query.filter_by(name=name).first() or Role(name=name)
            user.roles.append(role)
        db.session.add(user)
        db.session.commit()
        verifier.set(email, password)
        return user
    return _make
