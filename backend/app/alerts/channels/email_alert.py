"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • Resend REST API (primary, direct)
    • SMTP via smtplib (legacy relay), run off the event loop
    • HTML body with location link and a nearby-hospitals table,
      plus a plain-text alternative on SMTP

═══════════════════════════════════════════════════════════════════════════
WHY EMAIL FOR EMERGENCY ALERTS
═══════════════════════════════════════════════════════════════════════════

Pros:
    + Rich content (map link, hospital list with call buttons)
    + Persistent record the representative can come back to
    + Works without a phone number on file

Cons:
    − Slower delivery than SMS / WhatsApp
    − May land in spam during the first alert

Email runs independently of the phone channels and only when the
representative has an address.

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 ALERTA EMERGENCIA - {name} ha activado el botón de pánico
    Body:
        ┌─────────────────────────────────────────┐
        │  🚨 EMERGENCIA                           │
        ├─────────────────────────────────────────┤
        │  {name} needs immediate help             │
        │  📍 [Ver en Google Maps]                  │
        │  Hospital más cercano: {hospital}        │
        │  Hospitales cercanos: name · km · call   │
        └─────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import uuid
from email.message import EmailMessage
from typing import Optional

import httpx

from backend.app.alerts.channels.base import DEFAULT_PROVIDER_TIMEOUT, HTTPProvider
from backend.app.alerts.channels.messages import (
    build_email_html,
    build_email_subject,
    build_email_text,
)
from backend.app.alerts.models import NotificationParams, SendResult
from backend.app.core.errors import TransportError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class ResendEmailProvider(HTTPProvider):
    """Email through the Resend REST API."""

    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.api_key = api_key
        self.from_address = from_address

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "Resend not configured")

        subject = build_email_subject(params)
        try:
            logger.info("[EMAIL/Resend] Sending to %s: Subject='%s'", params.to, subject)
            data = await self._post(
                RESEND_API_URL,
                json={
                    "from": self.from_address,
                    "to": [params.to],
                    "subject": subject,
                    "html": build_email_html(params),
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except TransportError as exc:
            logger.error("[EMAIL/Resend] Failed for %s: %s", params.to, exc.reason)
            return SendResult.failed(self.name, exc.reason)

        message_id = data.get("id")
        logger.info("[EMAIL/Resend] Sent id=%s", message_id)
        return SendResult(success=True, provider=self.name, message_id=message_id)


class SMTPEmailProvider:
    """
    Email through an SMTP relay.

    smtplib is blocking, so each send runs in a worker thread.
    """

    name = "smtp"

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_address: str = "",
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    def get_name(self) -> str:
        return self.name

    def is_available(self) -> bool:
        return bool(self.host and self.from_address)

    def _build_message(self, params: NotificationParams) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = build_email_subject(params)
        msg["From"] = self.from_address
        msg["To"] = params.to
        msg["Message-ID"] = f"<{uuid.uuid4().hex}@{self.host}>"
        msg.set_content(build_email_text(params))
        msg.add_alternative(build_email_html(params), subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "SMTP not configured")

        msg = self._build_message(params)
        try:
            logger.info("[EMAIL/SMTP] Sending to %s via %s:%d", params.to, self.host, self.port)
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[EMAIL/SMTP] Failed for %s: %s", params.to, exc)
            return SendResult.failed(self.name, str(exc) or type(exc).__name__)

        message_id = msg["Message-ID"].strip("<>")
        logger.info("[EMAIL/SMTP] Sent id=%s", message_id)
        return SendResult(success=True, provider=self.name, message_id=message_id)
