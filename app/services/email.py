"""
Email service — sends one-time passcodes via SMTP.

In development (no SMTP configured), emails are printed to the console
so you can see what *would* be sent without configuring a mail server.

Failures are never raised to the caller: :meth:`EmailSender.send` returns
a :class:`DeliveryReport` carrying a short transport error code.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

import aiosmtplib

from app.config import (
    APP_NAME,
    SMTP_FROM_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_TIMEOUT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    smtp_enabled,
)
from app.services.otp.outcomes import DeliveryReport, OtpPurpose

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Transport error codes reported back to the OTP service
INVALID_EMAIL = "INVALID_EMAIL"
RECIPIENT_REFUSED = "ERECIPIENT"
AUTH_FAILED = "EAUTH"
CONNECTION_FAILED = "ESOCKET"
UNKNOWN_ERROR = "UNKNOWN"


@dataclass(frozen=True)
class OtpMessage:
    subject: str
    text: str
    html: str


# ── Templates ─────────────────────────────────────────────────────────────

_HEADINGS = {
    OtpPurpose.REGISTRATION: (
        "Email Verification",
        "please use the following code to verify your email address:",
        "If you did not request this, please ignore this email.",
    ),
    OtpPurpose.PASSWORD_RESET: (
        "Password Reset",
        "we received a request to reset your password. Use the following code to continue:",
        "If you did not request a password reset, please ignore this email "
        "or contact support if you believe this is unauthorized activity.",
    ),
}


def render_otp_message(
    purpose: OtpPurpose,
    address: str,
    code: str,
    ttl_seconds: float,
) -> OtpMessage:
    """Build subject, plain-text and HTML bodies for a passcode email."""
    heading, intro, footer = _HEADINGS[purpose]
    minutes = max(1, round(ttl_seconds / 60))
    subject = f"Your {APP_NAME} {heading.lower()} code"

    text = (
        f"Hello {address}, {intro}\n\n"
        f"    {code}\n\n"
        f"This code expires in {minutes} minutes. {footer}\n"
    )
    html = f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;
                border:1px solid #e0e0e0;border-radius:5px">
      <h2 style="color:#0288d1">{APP_NAME} — {heading}</h2>
      <p>Hello {address}, {intro}</p>
      <div style="background:#f5f5f5;padding:15px;border-radius:5px;text-align:center;margin:20px 0">
        <h1 style="color:#03a9f4;letter-spacing:5px;margin:0">{code}</h1>
      </div>
      <p>This code expires in {minutes} minutes. {footer}</p>
      <p style="margin-top:30px;font-size:12px;color:#777">
        This is an automated message, please do not reply.
      </p>
    </div>
    """
    return OtpMessage(subject=subject, text=text, html=html)


def _error_code(exc: Exception) -> str:
    """Map an SMTP failure to a transport error code."""
    if isinstance(exc, (aiosmtplib.SMTPRecipientsRefused, aiosmtplib.SMTPRecipientRefused)):
        return RECIPIENT_REFUSED
    if isinstance(exc, aiosmtplib.SMTPAuthenticationError):
        return AUTH_FAILED
    if isinstance(
        exc,
        (
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPServerDisconnected,
            aiosmtplib.SMTPTimeoutError,
            OSError,
        ),
    ):
        return CONNECTION_FAILED
    return UNKNOWN_ERROR


# ── Sender ────────────────────────────────────────────────────────────────


class EmailSender:
    """Sends transactional emails using the configured SMTP server."""

    async def send(
        self,
        address: str,
        subject: str,
        body: str,
        *,
        html: str | None = None,
    ) -> DeliveryReport:
        """
        Send (or log) one message to *address*.

        If SMTP is not configured, falls back to console output.
        """
        if not address or not _EMAIL_RE.match(address):
            logger.error("Invalid email format: %s", address)
            return DeliveryReport(success=False, error_code=INVALID_EMAIL)

        # ── Console fallback (dev mode) ───────────────────────────────
        if not smtp_enabled():
            logger.info(
                "📧 [DEV] Would send email to %s:\n  Subject: %s\n%s",
                address,
                subject,
                body,
            )
            return DeliveryReport(success=True, message_id="console")

        # ── Real SMTP send ────────────────────────────────────────────
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{APP_NAME} Support <{SMTP_FROM_EMAIL}>"
        msg["To"] = address
        msg["Message-ID"] = make_msgid()
        msg["X-Priority"] = "1"
        msg.attach(MIMEText(body, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=SMTP_HOST,
                port=SMTP_PORT,
                username=SMTP_USERNAME,
                password=SMTP_PASSWORD,
                start_tls=SMTP_USE_TLS,
                timeout=SMTP_TIMEOUT,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            code = _error_code(exc)
            logger.exception("Failed to send email to %s (%s)", address, code)
            return DeliveryReport(success=False, error_code=code)

        logger.info("Email sent to %s (%s)", address, msg["Message-ID"])
        return DeliveryReport(success=True, message_id=msg["Message-ID"])
