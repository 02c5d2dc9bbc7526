"""
whatsapp.py — WhatsApp delivery, template first.

WhatsApp only lets businesses open a conversation with an approved
template; free text is accepted inside the 24 h customer-service window.
Both providers therefore try the template and fall back to text:

    template configured? ──yes──▶ send template ──ok──▶ return
             │no                        │rejected
             ▼                          ▼
        send free text ◀────────────────┘

Providers:
    - WABAProvider            Meta Cloud API, direct (no intermediary)
    - TwilioWhatsAppProvider  Twilio Messages API with ``whatsapp:`` addresses
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from backend.app.alerts.channels.base import DEFAULT_PROVIDER_TIMEOUT, HTTPProvider
from backend.app.alerts.channels.messages import (
    accessor_label,
    build_whatsapp_text,
    hospital_label,
    location_url,
)
from backend.app.alerts.channels.phone_utils import (
    format_phone_for_waba,
    format_phone_for_whatsapp,
)
from backend.app.alerts.channels.sms_gateway import TWILIO_API_BASE
from backend.app.alerts.models import EventType, NotificationParams, SendResult
from backend.app.core.errors import TransportError

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"

# Share of the send budget the template attempt may use; the rest is left
# for the free-text fallback.
TEMPLATE_BUDGET_SHARE = 0.4


def _template_variables(params: NotificationParams) -> List[str]:
    """Ordered body variables shared by the Meta and Twilio templates."""
    url = location_url(params) or ""
    if params.event_type == EventType.PANIC:
        return [params.patient_name, url, hospital_label(params)]
    return [params.patient_name, accessor_label(params), url]


# ═══════════════════════════════════════════════════════════════════════════
# Meta Cloud API
# ═══════════════════════════════════════════════════════════════════════════

class WABAProvider(HTTPProvider):
    """WhatsApp Business API (Meta Cloud API)."""

    name = "waba"

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        *,
        api_version: str = "v18.0",
        template_emergency: str = "",
        template_access: str = "",
        template_language: str = "es_MX",
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        template_timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        if template_timeout_seconds is None:
            template_timeout_seconds = timeout_seconds * TEMPLATE_BUDGET_SHARE
        self.template_timeout_seconds = min(template_timeout_seconds, timeout_seconds)
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version
        self.template_emergency = template_emergency
        self.template_access = template_access
        self.template_language = template_language

    def is_available(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    @property
    def messages_url(self) -> str:
        return f"{GRAPH_API_BASE}/{self.api_version}/{self.phone_number_id}/messages"

    def template_for(self, event_type: EventType) -> str:
        if event_type == EventType.PANIC:
            return self.template_emergency
        return self.template_access

    async def _send_message(
        self, payload: Dict[str, Any], timeout: Optional[float] = None,
    ) -> Optional[str]:
        extra: Dict[str, Any] = {} if timeout is None else {"timeout": timeout}
        data = await self._post(
            self.messages_url,
            json={
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                **payload,
            },
            headers={"Authorization": f"Bearer {self.access_token}"},
            **extra,
        )
        messages = data.get("messages") or [{}]
        return messages[0].get("id")

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "WABA not configured")

        to = format_phone_for_waba(params.to)
        template = self.template_for(params.event_type)

        text_timeout: Optional[float] = None
        if template:
            try:
                message_id = await asyncio.wait_for(
                    self._send_message(
                        {
                            "to": to,
                            "type": "template",
                            "template": {
                                "name": template,
                                "language": {"code": self.template_language},
                                "components": [{
                                    "type": "body",
                                    "parameters": [
                                        {"type": "text", "text": v}
                                        for v in _template_variables(params)
                                    ],
                                }],
                            },
                        },
                        timeout=self.template_timeout_seconds,
                    ),
                    timeout=self.template_timeout_seconds,
                )
                logger.info("[WHATSAPP/WABA] Template %s sent id=%s", template, message_id)
                return SendResult(success=True, provider=self.name, message_id=message_id)
            except TransportError as exc:
                logger.warning(
                    "[WHATSAPP/WABA] Template %s failed (%s), trying free text",
                    template, exc.reason,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "[WHATSAPP/WABA] Template %s timed out after %.1fs, trying free text",
                    template, self.template_timeout_seconds,
                )
            text_timeout = max(self.timeout_seconds - self.template_timeout_seconds, 0.1)

        try:
            message_id = await self._send_message(
                {
                    "to": to,
                    "type": "text",
                    "text": {"preview_url": True, "body": build_whatsapp_text(params)},
                },
                timeout=text_timeout,
            )
        except TransportError as exc:
            logger.error("[WHATSAPP/WABA] Text failed for %s: %s", to, exc.reason)
            return SendResult.failed(self.name, exc.reason)

        logger.info("[WHATSAPP/WABA] Text sent id=%s", message_id)
        return SendResult(success=True, provider=self.name, message_id=message_id)


# ═══════════════════════════════════════════════════════════════════════════
# Twilio
# ═══════════════════════════════════════════════════════════════════════════

class TwilioWhatsAppProvider(HTTPProvider):
    """WhatsApp through Twilio (legacy path, kept for instant rollback)."""

    name = "twilio-whatsapp"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        template_sid: str = "",
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.template_sid = template_sid

    def is_available(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def _create(self, form: Dict[str, str]) -> Optional[str]:
        data = await self._post(
            self.messages_url,
            data=form,
            auth=(self.account_sid, self.auth_token),
        )
        return data.get("sid")

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "Twilio WhatsApp not configured")

        addressing = {
            "From": f"whatsapp:{self.from_number}",
            "To": f"whatsapp:{format_phone_for_whatsapp(params.to)}",
        }

        # Twilio content templates are only approved for the panic message
        if params.event_type == EventType.PANIC and self.template_sid:
            variables = {
                str(i): v for i, v in enumerate(_template_variables(params), start=1)
            }
            try:
                sid = await self._create({
                    **addressing,
                    "ContentSid": self.template_sid,
                    "ContentVariables": json.dumps(variables, ensure_ascii=False),
                })
                logger.info("[WHATSAPP/Twilio] Template sent sid=%s", sid)
                return SendResult(success=True, provider=self.name, message_id=sid)
            except TransportError as exc:
                logger.warning(
                    "[WHATSAPP/Twilio] Template failed (%s), trying free text", exc.reason,
                )

        try:
            sid = await self._create({**addressing, "Body": build_whatsapp_text(params)})
        except TransportError as exc:
            logger.error("[WHATSAPP/Twilio] Failed for %s: %s", addressing["To"], exc.reason)
            return SendResult.failed(self.name, exc.reason)

        logger.info("[WHATSAPP/Twilio] Text sent sid=%s", sid)
        return SendResult(success=True, provider=self.name, message_id=sid)
