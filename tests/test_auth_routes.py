from models.audit_log import AuditLog
from models.user import User
from security.csrf import CSRF_COOKIE, CSRF_HEADER
from security.password import UserPasswordVerifier
from tests.conftest import CHROME_WINDOWS, FIREFOX_MAC

PASSWORD = "correct horse battery"


def _login(client, email="u1@example.com", password=PASSWORD, device=CHROME_WINDOWS):
    return client.post("/auth/login", json={"email": email, "password": password, "device": device})


def _csrf(client):
    return {CSRF_HEADER: client.get_cookie(CSRF_COOKIE).value}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_first_login_sets_session_and_csrf_cookies(client, make_user):
    make_user()
    resp = _login(client)

    assert resp.status_code == 200
    assert client.get_cookie("storefront_session") is not None
    assert client.get_cookie(CSRF_COOKIE) is not None

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["email"] == "u1@example.com"


def test_invalid_credentials_reports_remaining(client, make_user):
    make_user()
    resp = _login(client, password="nope")
    assert resp.status_code == 401
    body = resp.get_json()
    assert body["error"] == "Invalid credentials"
    assert body["remaining_attempts"] == 4


def test_lockout_returns_423_with_retry_after(client, make_user, notifier):
    make_user()
    for _ in range(4):
        _login(client, password="nope")

    resp = _login(client, password="nope")
    assert resp.status_code == 423
    body = resp.get_json()
    assert body["locked"] is True
    assert body["retry_after_seconds"] == 30 * 60
    assert "notification email" in body["error"]

    # correct password is refused while locked
    resp = _login(client)
    assert resp.status_code == 423
    assert "Try again after" in resp.get_json()["error"]
    assert client.get_cookie("storefront_session") is None


def test_lockout_status_endpoint(client, make_user, frozen_clock):
    make_user()
    assert client.post("/auth/lockout_status", json={"email": "u1@example.com"}).get_json()["locked"] is False

    for _ in range(5):
        _login(client, password="nope")
    frozen_clock.advance(minutes=10)

    body = client.post("/auth/lockout_status", json={"email": "u1@example.com"}).get_json()
    assert body["locked"] is True
    assert body["retry_after_seconds"] == 20 * 60
    assert body["unlock_at"].endswith("Z")

    assert client.post("/auth/lockout_status", json={}).status_code == 400


def test_new_device_challenge_over_http(client, make_user, notifier):
    make_user()
    _login(client)
    client.delete_cookie("storefront_session")

    resp = _login(client, device=FIREFOX_MAC)
    assert resp.status_code == 202
    body = resp.get_json()
    assert body["verification_required"] is True
    assert body["email_sent"] is True
    token = body["verification_token"]

    code = notifier.last_code()
    wrong = "000000" if code != "000000" else "111111"
    bad = client.post("/auth/verify_login", json={"token": token, "code": wrong})
    assert bad.status_code == 400
    assert bad.get_json()["remaining_attempts"] == 4

    ok = client.post("/auth/verify_login", json={"token": token, "code": code})
    assert ok.status_code == 200
    assert ok.get_json()["verified"] is True
    assert client.get_cookie("storefront_session") is not None

    replay = client.post("/auth/verify_login", json={"token": token, "code": code})
    assert replay.status_code == 400
    assert "sign in again" in replay.get_json()["error"]


def test_verify_requires_token_and_code(client):
    assert client.post("/auth/verify_login", json={"token": "x"}).status_code == 400
    assert client.post("/auth/verify_login", json={}).status_code == 400


def test_verify_rejects_numeric_code_without_using_an_attempt(client, make_user, notifier):
    make_user()
    _login(client)
    token = _login(client, device=FIREFOX_MAC).get_json()["verification_token"]
    code = notifier.last_code()

    for value in (int(code), 0):
        resp = client.post("/auth/verify_login", json={"token": token, "code": value})
        assert resp.status_code == 400
        assert "strings" in resp.get_json()["error"]
        assert "remaining_attempts" not in resp.get_json()

    resp = client.post("/auth/verify_login", json={"token": 12345, "code": code})
    assert resp.status_code == 400
    assert client.post("/auth/resend_code", json={"token": 12345}).status_code == 400

    wrong = "000000" if code != "000000" else "111111"
    bad = client.post("/auth/verify_login", json={"token": token, "code": wrong})
    assert bad.get_json()["remaining_attempts"] == 4

    ok = client.post("/auth/verify_login", json={"token": token, "code": code})
    assert ok.status_code == 200


def test_resend_code_endpoint(client, make_user, notifier, app):
    make_user()
    _login(client)
    token = _login(client, device=FIREFOX_MAC).get_json()["verification_token"]

    resp = client.post("/auth/resend_code", json={"token": token})
    assert resp.status_code == 200
    assert resp.get_json()["email_sent"] is True
    assert len(notifier.of_kind("login_challenge")) == 2

    app.config["CHALLENGE_RESEND_COOLDOWN_SECONDS"] = 60
    resp = client.post("/auth/resend_code", json={"token": token})
    assert resp.status_code == 429
    assert resp.get_json()["retry_after_seconds"] == 60

    assert client.post("/auth/resend_code", json={"token": "bogus"}).status_code == 400


def test_verifier_outage_returns_503(client, make_user, verifier):
    make_user()
    verifier.error = "ldap timeout"
    resp = _login(client)
    assert resp.status_code == 503
    assert resp.get_json()["retry"] is True


def test_logout_requires_csrf(client, make_user):
    make_user()
    _login(client)

    assert client.post("/auth/logout").status_code == 403
    resp = client.post("/auth/logout", headers=_csrf(client))
    assert resp.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_sessions_and_logout_all_keep_current(client, app, make_user):
    make_user()
    other = app.test_client()
    _login(other)
    _login(client)

    sessions = client.get("/auth/sessions").get_json()["sessions"]
    assert len(sessions) == 2
    assert sum(1 for s in sessions if s["is_current"]) == 1

    resp = client.post("/auth/logout_all", headers=_csrf(client))
    assert resp.get_json()["revoked_sessions"] == 1
    assert client.get("/auth/me").status_code == 200
    assert other.get("/auth/me").status_code == 401


def test_revoke_single_session(client, app, make_user):
    make_user()
    other = app.test_client()
    _login(other)
    _login(client)

    sessions = client.get("/auth/sessions").get_json()["sessions"]
    target = next(s for s in sessions if not s["is_current"])

    resp = client.post(f"/auth/sessions/{target['id']}/revoke", headers=_csrf(client))
    assert resp.status_code == 200
    assert other.get("/auth/me").status_code == 401
    assert client.post("/auth/sessions/9999/revoke", headers=_csrf(client)).status_code == 404


def test_devices_list_and_remove(client, make_user, frozen_clock):
    make_user()
    _login(client)

    devices = client.get("/auth/devices").get_json()["devices"]
    assert [(d["browser"], d["os"], d["device"]) for d in devices] == [("Chrome", "Windows", "Desktop")]

    resp = client.post(f"/auth/devices/{devices[0]['id']}/remove", headers=_csrf(client))
    assert resp.status_code == 200
    assert client.get("/auth/devices").get_json()["devices"] == []

    # removing trust means the same browser is challenged next time
    frozen_clock.advance(minutes=1)
    assert _login(client).status_code == 202


def test_register_then_login_with_real_password_check(app):
    app.extensions["credential_verifier"] = UserPasswordVerifier()
    client = app.test_client()

    resp = client.post("/auth/register", json={"email": "New@Example.com", "password": "a long enough password"})
    assert resp.status_code == 201
    assert client.post("/auth/register", json={"email": "new@example.com", "password": "a long enough password"}).status_code == 409
    assert client.post("/auth/register", json={"email": "x@example.com", "password": "short"}).status_code == 400
    assert client.post("/auth/register", json={"email": "not-an-email", "password": "a long enough password"}).status_code == 400

    user = User.query.filter_by(email="new@example.com").one()
    assert [r.name for r in user.roles] == ["CUSTOMER"]

    assert _login(client, email="new@example.com", password="wrong password!!").status_code == 401
    assert _login(client, email="new@example.com", password="a long enough password").status_code == 200


def test_login_events_are_audited(client, make_user):
    make_user()
    _login(client, password="nope")
    _login(client)

    actions = [row.action for row in AuditLog.query.order_by(AuditLog.id).all()]
    assert actions == ["LOGIN_FAIL", "LOGIN_SUCCESS"]
