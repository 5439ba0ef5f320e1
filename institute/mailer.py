"""
mailer.py - Transactional email over SMTP
=========================================
Templates: welcome, password reset, reset confirmation, contact reply.
Delivery is best-effort: failures are logged and never fail the request
that triggered them.  With no SMTP host configured, mail is only logged.
"""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from .config import settings

logger = logging.getLogger("institute.mailer")

_SIGNATURE = "\n\n-- The Coaching Institute Team"


def send_mail(to_addr: str, subject: str, body: str) -> bool:
    """Send a plain-text email. Returns True if the SMTP server accepted it."""
    if not settings.smtp_host:
        logger.info("SMTP not configured; skipping email %r to %s", subject, to_addr)
        return False

    msg = MIMEMultipart()
    msg["From"] = settings.mail_from
    msg["To"] = to_addr
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    try:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        if settings.smtp_use_tls:
            server.starttls()
        try:
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.mail_from, [to_addr], msg.as_string())
        finally:
            server.quit()
        logger.info("Email %r sent to %s", subject, to_addr)
        return True
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email %r to %s failed: %s", subject, to_addr, exc)
        return False


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def send_welcome_email(to_addr: str, first_name: str, role: str) -> bool:
    lines = [
        f"Hi {first_name},",
        "",
        "Welcome to the Coaching Institute! Your account has been created.",
    ]
    if role == "instructor":
        lines.append("An administrator will review your instructor profile shortly.")
    else:
        lines.append(f"Browse our courses at {settings.frontend_url}/courses.")
    return send_mail(to_addr, "Welcome to the Coaching Institute", "\n".join(lines) + _SIGNATURE)


def send_password_reset_email(to_addr: str, first_name: str, token: str) -> bool:
    link = f"{settings.frontend_url}/reset-password?token={token}"
    body = (
        f"Hi {first_name},\n\n"
        "We received a request to reset your password. Use the link below; "
        f"it expires in {settings.password_reset_expire_minutes} minutes.\n\n"
        f"{link}\n\n"
        "If you did not ask for this, you can ignore this email."
    )
    return send_mail(to_addr, "Reset your password", body + _SIGNATURE)


def send_password_reset_confirmation(to_addr: str, first_name: str) -> bool:
    body = (
        f"Hi {first_name},\n\n"
        "Your password was changed. If this wasn't you, contact us immediately."
    )
    return send_mail(to_addr, "Your password has been reset", body + _SIGNATURE)


def send_contact_reply(to_addr: str, name: str, reply: str, original_subject: str) -> bool:
    body = f"Hi {name},\n\n{reply}\n\nRegarding: {original_subject}"
    return send_mail(to_addr, f"Re: {original_subject}", body + _SIGNATURE)
