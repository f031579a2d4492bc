import re
from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy import exists
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.session import Session
from models.trusted_device import TrustedDevice
from security.outcomes import TransientStoreError

UNKNOWN = "Unknown"

BROWSER_FAMILIES = ("Chrome", "Firefox", "Edge", "Safari", "Opera")
OS_FAMILIES = ("Windows", "macOS", "Linux", "Android", "iOS", "ChromeOS")
DEVICE_CLASSES = ("Desktop", "Mobile", "Tablet")

_BROWSER_ALIASES = {
    "chrome": "Chrome",
    "google chrome": "Chrome",
    "chromium": "Chrome",
    "chrome mobile": "Chrome",
    "firefox": "Firefox",
    "mozilla firefox": "Firefox",
    "firefox mobile": "Firefox",
    "edge": "Edge",
    "microsoft edge": "Edge",
    "safari": "Safari",
    "mobile safari": "Safari",
    "opera": "Opera",
}

_OS_ALIASES = {
    "windows": "Windows",
    "win": "Windows",
    "macos": "macOS",
    "mac os": "macOS",
    "mac os x": "macOS",
    "os x": "macOS",
    "mac": "macOS",
    "linux": "Linux",
    "ubuntu": "Linux",
    "android": "Android",
    "ios": "iOS",
    "iphone os": "iOS",
    "ipados": "iOS",
    "chrome os": "ChromeOS",
    "chromeos": "ChromeOS",
}

# versions and punctuation are dropped before alias lookup: "Chrome 120.0" -> "chrome"
_NOISE = re.compile(r"[\d._/()-]+")


@dataclass(frozen=True)
class Fingerprint:
    browser_family: str
    os_family: str
    device_class: str

    @property
    def key(self) -> str:
        return f"{self.browser_family}|{self.os_family}|{self.device_class}"

    def describe(self) -> str:
        return f"{self.browser_family} on {self.os_family} ({self.device_class})"

    @classmethod
    def from_key(cls, key: str) -> "Fingerprint":
        parts = (key or "").split("|")
        if len(parts) != 3:
            return cls(UNKNOWN, UNKNOWN, UNKNOWN)
        return cls(*parts)


def _clean(value) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(_NOISE.sub(" ", value).lower().split())


def _browser_from_ua(ua: str) -> Optional[str]:
    # order matters: Opera and Edge UAs also contain "Chrome", Chrome UAs contain "Safari"
    if "OPR/" in ua or "Opera" in ua:
        return "Opera"
    if "Edg" in ua:
        return "Edge"
    if "Firefox" in ua or "FxiOS" in ua:
        return "Firefox"
    if "Chrome" in ua or "CriOS" in ua or "Chromium" in ua:
        return "Chrome"
    if "Safari" in ua:
        return "Safari"
    return None


def _os_from_ua(ua: str) -> Optional[str]:
    # iOS UAs say "like Mac OS X" and Android UAs say "Linux"
    if "Windows" in ua:
        return "Windows"
    if "iPhone" in ua or "iPad" in ua or "iPod" in ua:
        return "iOS"
    if "Android" in ua:
        return "Android"
    if "CrOS" in ua:
        return "ChromeOS"
    if "Mac OS X" in ua or "Macintosh" in ua:
        return "macOS"
    if "Linux" in ua:
        return "Linux"
    return None


def _device_from_ua(ua: str) -> str:
    if "iPad" in ua or "Tablet" in ua or ("Android" in ua and "Mobile" not in ua):
        return "Tablet"
    if "Mobi" in ua or "iPhone" in ua or "iPod" in ua or "Android" in ua:
        return "Mobile"
    return "Desktop"


def _device_from_hint(hint, is_mobile) -> Optional[str]:
    cleaned = _clean(hint)
    for device_class in DEVICE_CLASSES:
        if cleaned == device_class.lower():
            return device_class
    if cleaned in ("phone", "smartphone"):
        return "Mobile"
    if is_mobile is True:
        return "Mobile"
    if is_mobile is False and cleaned == "":
        return "Desktop"
    return None


def classify(signals: Mapping) -> Fingerprint:
    """
    Coarse, deterministic device classification.

    signals may carry the raw "user_agent" string and/or client-reported
    "browser", "os", "device" and "is_mobile" hints. A reported value that
    maps to a known family wins; otherwise the raw user agent is used;
    anything left over is Unknown.
    """
    signals = signals or {}
    ua = signals.get("user_agent") or ""
    if not isinstance(ua, str):
        ua = ""

    browser = _BROWSER_ALIASES.get(_clean(signals.get("browser"))) or _browser_from_ua(ua) or UNKNOWN
    os_family = _OS_ALIASES.get(_clean(signals.get("os"))) or _os_from_ua(ua) or UNKNOWN

    device_class = _device_from_hint(signals.get("device"), signals.get("is_mobile"))
    if device_class is None:
        device_class = _device_from_ua(ua) if ua else UNKNOWN

    return Fingerprint(browser, os_family, device_class)


def is_known(user_id: int, fingerprint: Fingerprint) -> bool:
    try:
        return db.session.query(
            exists().where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.fingerprint == fingerprint.key,
            )
        ).scalar()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientStoreError("trusted device lookup failed") from exc


def has_any_sessions(user_id: int) -> bool:
    """
    True once the user has ever had a session or a trusted device.
    Revoked sessions still count, so revoking everything does not bring
    back the first-login shortcut.
    """
    try:
        has_session = db.session.query(exists().where(Session.user_id == user_id)).scalar()
        if has_session:
            return True
        return db.session.query(exists().where(TrustedDevice.user_id == user_id)).scalar()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise TransientStoreError("session lookup failed") from exc
