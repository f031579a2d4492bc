from models.user import User
from security import login_flow
from security.challenge import get_challenge
from tests.conftest import CHROME_WINDOWS, FIREFOX_MAC

PASSWORD = "correct horse battery"


def test_make_admin(app, make_user):
    make_user("boss@example.com")
    runner = app.test_cli_runner()

    result = runner.invoke(args=["make-admin", "Boss@Example.com"])
    assert "promoted to ADMIN" in result.output
    assert [r.name for r in User.query.filter_by(email="boss@example.com").one().roles] == ["ADMIN"]

    assert "User not found" in runner.invoke(args=["make-admin", "nobody@example.com"]).output


def test_unlock_account(app, make_user, notifier):
    make_user("bob@x.com")
    for _ in range(5):
        login_flow.attempt_login("bob@x.com", "nope", dict(CHROME_WINDOWS))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["unlock-account", "bob@x.com", "--by", "ops"])
    assert "unlocked" in result.output
    assert login_flow.check_lockout("bob@x.com").locked is False
    assert notifier.of_kind("unlock_alert")[-1]["by"] == "ops"

    assert "No open lockout" in runner.invoke(args=["unlock-account", "bob@x.com"]).output


def test_purge_expired(app, make_user, frozen_clock):
    make_user("u1@example.com")
    login_flow.attempt_login("u1@example.com", PASSWORD, dict(CHROME_WINDOWS))
    challenged = login_flow.attempt_login("u1@example.com", PASSWORD, dict(FIREFOX_MAC))
    frozen_clock.advance(minutes=16)

    result = app.test_cli_runner().invoke(args=["purge-expired"])
    assert "Removed 1 challenge(s) and 0 session(s)" in result.output
    assert get_challenge(challenged.token) is None

    frozen_clock.advance(days=31)
    result = app.test_cli_runner().invoke(args=["purge-expired"])
    assert "and 1 session(s)" in result.output
