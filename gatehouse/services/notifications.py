"""
gatehouse.services.notifications — SMS / Email Delivery & QR Rendering
=======================================================================

SMS goes out through the Termii HTTP API, email through plain SMTP.  A
channel without credentials degrades to logging the message, so a dev box
can exercise ``send-code`` end to end without real providers.
"""

from __future__ import annotations

import io
import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage

import httpx
import qrcode

from gatehouse.exceptions import DeliveryError

logger = logging.getLogger(__name__)

TERMII_SMS_URL = "https://api.ng.termii.com/api/sms/send"


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    channel: str
    recipient: str
    delivered: bool
    provider_id: str | None = None


def render_qr_png(data: str) -> bytes:
    """Render *data* as a PNG QR code."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class Notifier:
    """Outbound messaging for visitor passes."""

    def __init__(
        self,
        *,
        termii_api_key: str | None = None,
        sms_sender_id: str = "Gatehouse",
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_from: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.termii_api_key = termii_api_key
        self.sms_sender_id = sms_sender_id
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_from = smtp_from or smtp_user or "no-reply@gatehouse.local"
        self.timeout = timeout

    @classmethod
    def from_env(cls, sms_sender_id: str = "Gatehouse") -> Notifier:
        return cls(
            termii_api_key=os.getenv("TERMII_API_KEY") or None,
            sms_sender_id=sms_sender_id,
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_from=os.getenv("SMTP_FROM") or None,
        )

    # -- SMS ---------------------------------------------------------------
    def send_sms(self, to: str, message: str) -> DeliveryReceipt:
        if not self.termii_api_key:
            logger.info("SMS not configured; would send to %s: %s", to, message)
            return DeliveryReceipt("SMS", to, delivered=False)

        try:
            resp = httpx.post(
                TERMII_SMS_URL,
                json={
                    "to": to,
                    "from": self.sms_sender_id,
                    "sms": message,
                    "type": "plain",
                    "channel": "generic",
                    "api_key": self.termii_api_key,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("SMS delivery to %s failed: %s", to, exc)
            raise DeliveryError("Failed to send SMS") from exc

        # The message is out at this point; an unreadable body only loses the id.
        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            logger.warning("SMS to %s sent but Termii replied with non-JSON: %.200s", to, resp.text)
            body = {}
        provider_id = body.get("message_id") if isinstance(body, dict) else None
        logger.info("SMS sent to %s", to)
        return DeliveryReceipt("SMS", to, delivered=True, provider_id=provider_id)

    # -- Email -------------------------------------------------------------
    def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        *,
        qr_png: bytes | None = None,
    ) -> DeliveryReceipt:
        if not self.smtp_host:
            logger.info("Email not configured; would send %r to %s", subject, to)
            return DeliveryReceipt("EMAIL", to, delivered=False)

        msg = EmailMessage()
        msg["From"] = self.smtp_from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        if qr_png:
            msg.add_attachment(qr_png, maintype="image", subtype="png", filename="visitor-pass.png")

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.smtp_user:
                    server.starttls()
                    server.login(self.smtp_user, self.smtp_password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email delivery to %s failed: %s", to, exc)
            raise DeliveryError("Failed to send email") from exc

        logger.info("Email sent to %s", to)
        return DeliveryReceipt("EMAIL", to, delivered=True)
