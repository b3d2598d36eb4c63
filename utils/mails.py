"""Transactional email over the configured SMTP relay."""

import logging
import smtplib
from email.message import EmailMessage

from starlette.concurrency import run_in_threadpool

from config import APP_PASSWORD, EMAIL, FRONTEND_HOST, SMTP_HOST, SMTP_PORT

logger = logging.getLogger(__name__)


def _deliver(message: EmailMessage) -> None:
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
        smtp.starttls()
        smtp.login(EMAIL, APP_PASSWORD)
        smtp.send_message(message)


async def send_mail(to: str, subject: str, html: str) -> bool:
    """Send one HTML email. Returns False when no relay is configured."""
    if not EMAIL or not APP_PASSWORD:
        logger.warning("email relay not configured, dropping %r to %s", subject, to)
        return False
    message = EmailMessage()
    message["From"] = EMAIL
    message["To"] = to
    message["Subject"] = subject
    message.set_content("This message requires an HTML capable mail client.")
    message.add_alternative(html, subtype="html")
    await run_in_threadpool(_deliver, message)
    logger.info("sent %r to %s", subject, to)
    return True


async def send_verification_mail(email: str, token: str) -> bool:
    link = f"{FRONTEND_HOST}/verify-email/{token}"
    html = (
        "<h1>Verify your email</h1>"
        "<p>Confirm this address to finish setting up your account.</p>"
        f'<p>Click <a href="{link}">here</a> to verify your email</p>'
    )
    return await send_mail(email, "Verify your email", html)


async def send_reset_password_mail(email: str, token: str) -> bool:
    link = f"{FRONTEND_HOST}/reset-password/{token}"
    html = (
        "<h1>Password Reset</h1>"
        "<p>Password reset link for your account</p>"
        f'<p>Click <a href="{link}">here</a> to reset your password</p>'
    )
    return await send_mail(email, "Password Reset", html)


async def send_username_mail(email: str, username: str) -> bool:
    html = f"<h1>Your username</h1><p>The username registered to this address is <b>{username}</b>.</p>"
    return await send_mail(email, "Your username", html)
