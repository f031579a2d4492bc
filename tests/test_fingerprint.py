import pytest

from models import db
from security.fingerprint import (
    UNKNOWN,
    Fingerprint,
    classify,
    has_any_sessions,
    is_known,
)
from security.session import create_session, revoke_all_sessions, upsert_trusted_device

CHROME_WIN_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WIN_UA = CHROME_WIN_UA + " Edg/120.0.2210.61"
FIREFOX_MAC_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.2; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD_UA = SAFARI_IPHONE_UA.replace("iPhone; CPU iPhone OS", "iPad; CPU OS")
CHROME_ANDROID_PHONE_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.144 Mobile Safari/537.36"
)
CHROME_ANDROID_TABLET_UA = CHROME_ANDROID_PHONE_UA.replace("Pixel 8", "SM-X700").replace(" Mobile", "")
OPERA_LINUX_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/119.0.0.0 Safari/537.36 OPR/105.0.0.0"
)


@pytest.mark.parametrize("ua, expected", [
    (CHROME_WIN_UA, ("Chrome", "Windows", "Desktop")),
    (EDGE_WIN_UA, ("Edge", "Windows", "Desktop")),
    (FIREFOX_MAC_UA, ("Firefox", "macOS", "Desktop")),
    (SAFARI_IPHONE_UA, ("Safari", "iOS", "Mobile")),
    (SAFARI_IPAD_UA, ("Safari", "iOS", "Tablet")),
    (CHROME_ANDROID_PHONE_UA, ("Chrome", "Android", "Mobile")),
    (CHROME_ANDROID_TABLET_UA, ("Chrome", "Android", "Tablet")),
    (OPERA_LINUX_UA, ("Opera", "Linux", "Desktop")),
])
def test_classify_from_user_agent(ua, expected):
    fp = classify({"user_agent": ua})
    assert (fp.browser_family, fp.os_family, fp.device_class) == expected


def test_reported_hints_win_over_user_agent():
    fp = classify({
        "user_agent": CHROME_WIN_UA,
        "browser": "Firefox 121.0",
        "os": "Mac OS X",
        "device": "tablet",
    })
    assert fp == Fingerprint("Firefox", "macOS", "Tablet")


def test_unrecognised_hint_falls_back_to_user_agent():
    fp = classify({"user_agent": FIREFOX_MAC_UA, "browser": "NetSurf", "os": "Haiku"})
    assert fp.browser_family == "Firefox"
    assert fp.os_family == "macOS"


def test_is_mobile_flag():
    assert classify({"is_mobile": True}).device_class == "Mobile"
    assert classify({"is_mobile": False}).device_class == "Desktop"


@pytest.mark.parametrize("signals", [
    None,
    {},
    {"user_agent": ""},
    {"user_agent": 42, "browser": ["x"], "os": None, "device": object()},
    {"user_agent": "curl/8.4.0"},
])
def test_unknown_inputs_never_raise(signals):
    fp = classify(signals)
    assert fp.browser_family == UNKNOWN
    assert fp.os_family == UNKNOWN
    assert fp.device_class in (UNKNOWN, "Desktop")


def test_empty_input_is_unknown_on_every_axis():
    assert classify({}) == Fingerprint(UNKNOWN, UNKNOWN, UNKNOWN)


def test_classify_is_deterministic():
    signals = {"user_agent": SAFARI_IPHONE_UA}
    assert classify(signals) == classify(dict(signals))
    assert classify(signals).key == "Safari|iOS|Mobile"


def test_key_round_trip_and_description():
    fp = Fingerprint("Chrome", "Windows", "Desktop")
    assert Fingerprint.from_key(fp.key) == fp
    assert fp.describe() == "Chrome on Windows (Desktop)"
    assert Fingerprint.from_key("garbage") == Fingerprint(UNKNOWN, UNKNOWN, UNKNOWN)


def test_is_known_and_has_any_sessions(app, make_user):
    user = make_user()
    chrome = Fingerprint("Chrome", "Windows", "Desktop")
    firefox = Fingerprint("Firefox", "macOS", "Desktop")

    assert has_any_sessions(user.id) is False
    assert is_known(user.id, chrome) is False

    upsert_trusted_device(user.id, chrome)
    assert is_known(user.id, chrome) is True
    assert is_known(user.id, firefox) is False
    assert has_any_sessions(user.id) is True


def test_revoked_sessions_still_count_as_history(app, make_user):
    user = make_user()
    create_session(user.id, Fingerprint("Chrome", "Windows", "Desktop"))
    revoke_all_sessions(user.id)
    db.session.expire_all()

    assert has_any_sessions(user.id) is True
