"""
dispatcher.py — Multi-channel notification fan-out.

For each representative the dispatcher attempts every channel the
representative has contact data for, records one audit row per attempt
and folds the outcomes into a RecipientResult.

═══════════════════════════════════════════════════════════════════════════
PER-RECIPIENT FLOW
═══════════════════════════════════════════════════════════════════════════

    phone?  ──yes──▶ SMS ─────┐
            ──yes──▶ WhatsApp ─┼──▶ gather ──▶ RecipientResult
    email?  ──yes──▶ Email ────┘
    (missing contact data → channel "skipped")

Each channel:

    provider available? ──no──▶ simulate  (success, provider="simulation")
            │yes
            ▼
    wait_for(provider.send, channel_timeout) ──▶ SendResult
            │
            ▼
    store.create_notification_record(...)   failures logged, never raised

A channel that raises or times out is "failed" for that channel only;
its siblings are unaffected.

═══════════════════════════════════════════════════════════════════════════
FAN-OUT ACROSS RECIPIENTS
═══════════════════════════════════════════════════════════════════════════

    sort by priority (stable) ──▶ Semaphore(max_concurrency) ──▶ gather

One result per recipient, in priority order, no matter what fails.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from backend.app.alerts.channels.base import (
    ChannelProvider,
    EmailProvider,
    SMSProvider,
    WhatsAppProvider,
)
from backend.app.alerts.channels.messages import (
    build_email_subject,
    build_email_text,
    build_sms_text,
    build_whatsapp_text,
)
from backend.app.alerts.models import (
    ChannelStatus,
    DeliveryStatus,
    EventContext,
    NOTIFICATION_TYPE_BY_EVENT,
    NotificationChannel,
    NotificationParams,
    NotificationRecord,
    RecipientResult,
    Representative,
    SendResult,
)
from backend.app.alerts.repository import NotificationStore
from backend.app.core.errors import ValidationError

logger = logging.getLogger(__name__)

SIMULATION_PROVIDER = "simulation"
DEFAULT_CHANNEL_TIMEOUT = 17.0
DEFAULT_MAX_CONCURRENCY = 5


def _simulated_result() -> SendResult:
    return SendResult(
        success=True,
        provider=SIMULATION_PROVIDER,
        message_id=f"SIM-{uuid.uuid4().hex[:12].upper()}",
    )


def _channel_status(result: Optional[SendResult]) -> ChannelStatus:
    if result is None:
        return ChannelStatus.SKIPPED
    return ChannelStatus.SENT if result.success else ChannelStatus.FAILED


class NotificationDispatcher:
    """
    Sends one event to many representatives across SMS, WhatsApp and Email.

    Usage:
        dispatcher = NotificationDispatcher(sms, whatsapp, email, store)
        results = await dispatcher.notify_all(representatives, context)
    """

    def __init__(
        self,
        sms: SMSProvider,
        whatsapp: WhatsAppProvider,
        email: EmailProvider,
        store: NotificationStore,
        *,
        channel_timeout_seconds: float = DEFAULT_CHANNEL_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.providers: Dict[NotificationChannel, ChannelProvider] = {
            NotificationChannel.SMS: sms,
            NotificationChannel.WHATSAPP: whatsapp,
            NotificationChannel.EMAIL: email,
        }
        self.store = store
        self.channel_timeout_seconds = channel_timeout_seconds
        self.max_concurrency = max(1, max_concurrency)

    # ── Health ──

    def is_in_simulation_mode(self) -> bool:
        """True when no phone channel can actually deliver."""
        return not (
            self.providers[NotificationChannel.SMS].is_available()
            or self.providers[NotificationChannel.WHATSAPP].is_available()
        )

    def provider_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            channel.value.lower(): {
                "provider": provider.get_name(),
                "available": provider.is_available(),
            }
            for channel, provider in self.providers.items()
        }
        info["simulation_mode"] = self.is_in_simulation_mode()
        return info

    # ── Single channel ──

    @staticmethod
    def _render(channel: NotificationChannel, params: NotificationParams) -> Dict[str, Optional[str]]:
        if channel == NotificationChannel.SMS:
            return {"subject": None, "body": build_sms_text(params)}
        if channel == NotificationChannel.WHATSAPP:
            return {"subject": None, "body": build_whatsapp_text(params)}
        return {"subject": build_email_subject(params), "body": build_email_text(params)}

    async def _send_channel(
        self,
        channel: NotificationChannel,
        params: NotificationParams,
    ) -> SendResult:
        """Simulate or send, bounded by the channel timeout."""
        provider = self.providers[channel]

        if not provider.is_available():
            result = _simulated_result()
            logger.info(
                "[%s] Simulation → %s (%s): %s",
                channel.value, params.to, params.patient_name, result.message_id,
                extra={"channel": channel.value, "provider": SIMULATION_PROVIDER},
            )
            return result

        name = provider.get_name()
        try:
            return await asyncio.wait_for(
                provider.send(params), timeout=self.channel_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[%s] %s timed out after %.1fs for %s",
                channel.value, name, self.channel_timeout_seconds, params.to,
                extra={"channel": channel.value, "provider": name},
            )
            return SendResult.failed(
                name, f"Channel timed out after {self.channel_timeout_seconds:.1f}s",
            )
        except Exception as exc:
            logger.exception(
                "[%s] %s raised for %s", channel.value, name, params.to,
                extra={"channel": channel.value, "provider": name},
            )
            return SendResult.failed(name, str(exc) or type(exc).__name__)

    async def _record(
        self,
        channel: NotificationChannel,
        params: NotificationParams,
        result: SendResult,
    ) -> None:
        rendered = self._render(channel, params)
        metadata: Dict[str, Any] = {
            "provider": result.provider,
            "simulated": result.provider == SIMULATION_PROVIDER,
            "event_type": params.event_type.value,
        }
        if params.has_location:
            metadata["location"] = {"lat": params.latitude, "lng": params.longitude}
        if params.accessor_name:
            metadata["accessor_name"] = params.accessor_name

        record = NotificationRecord(
            recipient=params.to,
            type=NOTIFICATION_TYPE_BY_EVENT[params.event_type],
            channel=channel,
            subject=rendered["subject"],
            body=rendered["body"] or "",
            status=DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED,
            message_id=result.message_id,
            error_message=result.error,
            metadata=metadata,
        )
        try:
            await self.store.create_notification_record(record)
        except Exception:
            logger.exception(
                "[%s] Could not persist notification record for %s",
                channel.value, params.to,
                extra={"channel": channel.value},
            )

    async def _run_channel(
        self,
        channel: NotificationChannel,
        to: str,
        context: EventContext,
    ) -> SendResult:
        params = context.params_for(to)
        result = await self._send_channel(channel, params)
        await self._record(channel, params, result)
        return result

    # ── Per recipient ──

    async def notify_recipient(
        self,
        recipient: Representative,
        context: EventContext,
    ) -> RecipientResult:
        """
        Notify one representative on every channel they can be reached on.

        Raises
        ------
        ValidationError
            The representative has neither a phone number nor an email.
        """
        if not recipient.phone and not recipient.email:
            raise ValidationError(
                f"Representative '{recipient.name}' has no phone or email",
                field="representative",
                representative_id=recipient.id,
            )

        planned: List[NotificationChannel] = []
        coros = []
        if recipient.phone:
            planned += [NotificationChannel.SMS, NotificationChannel.WHATSAPP]
            coros += [
                self._run_channel(NotificationChannel.SMS, recipient.phone, context),
                self._run_channel(NotificationChannel.WHATSAPP, recipient.phone, context),
            ]
        if recipient.email:
            planned.append(NotificationChannel.EMAIL)
            coros.append(self._run_channel(NotificationChannel.EMAIL, recipient.email, context))

        outcomes = await asyncio.gather(*coros, return_exceptions=True)

        results: Dict[NotificationChannel, SendResult] = {}
        for channel, outcome in zip(planned, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(
                    "[%s] Unexpected failure for %s: %s",
                    channel.value, recipient.id, outcome,
                    extra={"channel": channel.value},
                )
                outcome = SendResult.failed("unknown", str(outcome) or type(outcome).__name__)
            results[channel] = outcome

        sms = results.get(NotificationChannel.SMS)
        whatsapp = results.get(NotificationChannel.WHATSAPP)
        email = results.get(NotificationChannel.EMAIL)

        message_id = next(
            (r.message_id for r in (sms, whatsapp) if r and r.success and r.message_id),
            None,
        )
        error = next(
            (r.error for r in (sms, whatsapp, email) if r and not r.success and r.error),
            None,
        )

        return RecipientResult(
            representative_id=recipient.id,
            name=recipient.name,
            phone=recipient.phone,
            email=recipient.email,
            sms_status=_channel_status(sms),
            whatsapp_status=_channel_status(whatsapp),
            email_status=_channel_status(email),
            message_id=message_id,
            error=error,
        )

    # ── Fan-out ──

    async def notify_all(
        self,
        recipients: Sequence[Representative],
        context: EventContext,
    ) -> List[RecipientResult]:
        """Notify every recipient concurrently; one result each, in priority order."""
        ordered = sorted(recipients, key=lambda r: r.priority)
        if not ordered:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        start = time.perf_counter()

        async def _one(rep: Representative) -> RecipientResult:
            async with semaphore:
                try:
                    return await self.notify_recipient(rep, context)
                except Exception as exc:
                    logger.exception(
                        "Dispatch to representative %s failed", rep.id,
                    )
                    return RecipientResult.total_failure(rep, str(exc) or type(exc).__name__)

        results = await asyncio.gather(*(_one(rep) for rep in ordered))

        reached = sum(1 for r in results if r.reached)
        logger.info(
            "%s dispatch complete: %d/%d representatives reached (%.0fms)",
            context.event_type.value, reached, len(results),
            (time.perf_counter() - start) * 1000,
            extra={"recipient_count": len(results)},
        )
        return list(results)
