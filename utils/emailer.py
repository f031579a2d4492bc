import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger("storefront_guard.notify")


def send_email(to_email: str, subject: str, body: str):
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    from_name = current_app.config.get("SMTP_FROM_NAME")
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)


def _challenge_message(p: dict):
    subject = "Verify Your Login - Security Alert"
    body = (
        f"Hi {p.get('name') or 'there'},\n\n"
        "We detected a login attempt from a new device. For your security, "
        "please verify this is you.\n\n"
        f"Browser: {p.get('browser')}\n"
        f"Operating system: {p.get('os')}\n"
        f"Device type: {p.get('device_class')}\n\n"
        f"Your verification code: {p['code']}\n"
        f"This code expires in {p.get('expires_minutes', 15)} minutes. "
        "If it does not arrive, request a new one from the sign-in page.\n\n"
        "If you didn't try to log in, please change your password immediately!\n"
    )
    return subject, body


def _lockout_message(p: dict):
    subject = "Account Locked - Too Many Failed Login Attempts"
    body = (
        "Your account has been temporarily locked after "
        f"{p.get('failed_attempts')} failed login attempts.\n\n"
        f"It will unlock automatically at {p.get('unlock_at')} UTC.\n"
    )
    if p.get("device"):
        body += f"Last attempt came from: {p['device']}\n"
    body += "\nIf this wasn't you, consider changing your password once the lock ends.\n"
    return subject, body


def _unlock_message(p: dict):
    method = "Automatic (expired)" if p.get("automatic") else "Manual (by admin)"
    subject = "Your Account Has Been Unlocked"
    body = (
        "Your account is unlocked and you can sign in again.\n\n"
        f"Unlock method: {method}\n"
    )
    return subject, body


_RENDERERS = {
    "login_challenge": _challenge_message,
    "lockout_alert": _lockout_message,
    "unlock_alert": _unlock_message,
}


def render_message(payload: dict):
    """
    Returns (subject, body) for a notifier payload.
    """
    renderer = _RENDERERS.get(payload.get("kind"))
    if renderer is None:
        raise ValueError(f"unknown notification kind: {payload.get('kind')!r}")
    return renderer(payload)


class SmtpNotifier:
    """
    Notifier backed by send_email. send() reports success only; the reason
    for a failure is logged, never raised.
    """

    def send(self, destination: str, payload: dict) -> bool:
        subject, body = render_message(payload)
        ok, error = send_email(destination, subject, body)
        if not ok:
            logger.warning("%s to %s not sent: %s", payload.get("kind"), destination, error)
        return ok
