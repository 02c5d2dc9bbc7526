"""
sms_gateway.py — SMS delivery via gateway integration.

Delivery mechanism:
    • HTTP API to an SMS gateway (Twilio or MSG91)
    • Payload: single plain-text line with the maps link
    • Phone numbers normalised to E.164 before sending

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST  →  SMS Gateway API  →  Carrier  →  Handset

    Provider abstraction:
        - Twilio:  POST https://api.twilio.com/2010-04-01/Accounts/{SID}/Messages.json
                   Basic auth (SID, token), form body To / From / Body
        - MSG91:   POST https://control.msg91.com/api/v5/flow/
                   "authkey" header, JSON body with a DLT flow template

    Twilio is the legacy gateway and MSG91 the direct route; either can be
    primary, the other the fallback (see factory.py).

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    "EMERGENCIA: {patient_name} activó alerta de pánico. {maps_url}"
    "VIDA: Acceso medico a {patient_name} por {accessor_name}. {maps_url}"
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from backend.app.alerts.channels.base import DEFAULT_PROVIDER_TIMEOUT, HTTPProvider
from backend.app.alerts.channels.messages import (
    accessor_label,
    build_sms_text,
    location_url,
)
from backend.app.alerts.channels.phone_utils import format_phone_for_sms
from backend.app.alerts.models import NotificationParams, SendResult
from backend.app.core.errors import TransportError

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
MSG91_FLOW_URL = "https://control.msg91.com/api/v5/flow/"


class TwilioSMSProvider(HTTPProvider):
    """SMS through the Twilio Messages REST API."""

    name = "twilio-sms"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def is_available(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "Twilio SMS not configured")

        to = format_phone_for_sms(params.to)
        body = build_sms_text(params)

        try:
            logger.info("[SMS/Twilio] Sending to %s (%d chars)", to, len(body))
            data = await self._post(
                self.messages_url,
                data={"To": to, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
            )
        except TransportError as exc:
            logger.error("[SMS/Twilio] Failed for %s: %s", to, exc.reason)
            return SendResult.failed(self.name, exc.reason)

        sid = data.get("sid")
        logger.info("[SMS/Twilio] Sent sid=%s status=%s", sid, data.get("status"))
        return SendResult(success=True, provider=self.name, message_id=sid)


class Msg91SMSProvider(HTTPProvider):
    """
    SMS through the MSG91 v5 flow API.

    MSG91 only delivers DLT-registered templates, so the body is rendered
    by the flow and we pass its variables.
    """

    name = "msg91"

    def __init__(
        self,
        auth_key: str,
        template_id: str,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.auth_key = auth_key
        self.template_id = template_id

    def is_available(self) -> bool:
        return bool(self.auth_key and self.template_id)

    def _flow_payload(self, params: NotificationParams) -> Dict[str, Any]:
        mobile = format_phone_for_sms(params.to).lstrip("+")
        recipient: Dict[str, Any] = {
            "mobiles": mobile,
            "patient_name": params.patient_name,
            "maps_url": location_url(params) or "",
            "event": params.event_type.value,
            "message": build_sms_text(params),
        }
        if params.nearest_hospital:
            recipient["hospital"] = params.nearest_hospital
        if params.accessor_name:
            recipient["accessor_name"] = accessor_label(params)
        return {
            "template_id": self.template_id,
            "short_url": "0",
            "recipients": [recipient],
        }

    async def send(self, params: NotificationParams) -> SendResult:
        if not self.is_available():
            return SendResult.failed(self.name, "MSG91 not configured")

        payload = self._flow_payload(params)
        mobile = payload["recipients"][0]["mobiles"]

        try:
            logger.info("[SMS/MSG91] Sending to %s", mobile)
            data = await self._post(
                MSG91_FLOW_URL,
                json=payload,
                headers={"authkey": self.auth_key, "accept": "application/json"},
            )
        except TransportError as exc:
            logger.error("[SMS/MSG91] Failed for %s: %s", mobile, exc.reason)
            return SendResult.failed(self.name, exc.reason)

        # MSG91 reports rejections with HTTP 200 and type=error
        if data.get("type") != "success":
            error = str(data.get("message") or "MSG91 rejected the request")
            logger.error("[SMS/MSG91] Rejected for %s: %s", mobile, error)
            return SendResult.failed(self.name, error)

        request_id = data.get("message")
        logger.info("[SMS/MSG91] Sent request_id=%s", request_id)
        return SendResult(success=True, provider=self.name, message_id=request_id)
