"""
factory.py — Build the per-channel providers from Settings.

    SMS_PROVIDER       twilio | msg91
    WHATSAPP_PROVIDER  waba   | twilio
    EMAIL_PROVIDER     resend | smtp

With ``<CHANNEL>_FALLBACK_ENABLED`` the selected provider becomes the
primary of a FallbackProvider and the channel's other implementation
the secondary. Flipping ``<CHANNEL>_PROVIDER`` is the rollback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict

from backend.app.alerts.channels.base import (
    ChannelProvider,
    EmailProvider,
    FallbackProvider,
    SMSProvider,
    WhatsAppProvider,
)
from backend.app.alerts.channels.email_alert import ResendEmailProvider, SMTPEmailProvider
from backend.app.alerts.channels.sms_gateway import Msg91SMSProvider, TwilioSMSProvider
from backend.app.alerts.channels.whatsapp import TwilioWhatsAppProvider, WABAProvider
from backend.app.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ChannelProviders:
    sms: SMSProvider
    whatsapp: WhatsAppProvider
    email: EmailProvider

    async def close(self) -> None:
        for provider in (self.sms, self.whatsapp, self.email):
            close = getattr(provider, "close", None)
            if close is not None:
                await close()


# ── Builders ──

def _twilio_sms(s: Settings) -> ChannelProvider:
    return TwilioSMSProvider(
        s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN, s.TWILIO_PHONE_NUMBER,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


def _msg91_sms(s: Settings) -> ChannelProvider:
    return Msg91SMSProvider(
        s.MSG91_AUTH_KEY, s.MSG91_TEMPLATE_ID,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


def _waba(s: Settings) -> ChannelProvider:
    return WABAProvider(
        s.WABA_PHONE_NUMBER_ID, s.WABA_ACCESS_TOKEN,
        api_version=s.WABA_API_VERSION,
        template_emergency=s.WABA_TEMPLATE_EMERGENCY,
        template_access=s.WABA_TEMPLATE_ACCESS,
        template_language=s.WABA_TEMPLATE_LANGUAGE,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


def _twilio_whatsapp(s: Settings) -> ChannelProvider:
    return TwilioWhatsAppProvider(
        s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN, s.TWILIO_WHATSAPP_NUMBER,
        template_sid=s.TWILIO_WHATSAPP_TEMPLATE_ID,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


def _resend(s: Settings) -> ChannelProvider:
    return ResendEmailProvider(
        s.RESEND_API_KEY, s.EMAIL_FROM,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


def _smtp(s: Settings) -> ChannelProvider:
    return SMTPEmailProvider(
        s.SMTP_HOST, s.SMTP_PORT,
        username=s.SMTP_USER,
        password=s.SMTP_PASSWORD,
        use_tls=s.SMTP_USE_TLS,
        from_address=s.EMAIL_FROM,
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
    )


_Builder = Callable[[Settings], ChannelProvider]

# channel → {name: builder}; insertion order picks the secondary
PROVIDER_REGISTRY: Dict[str, Dict[str, _Builder]] = {
    "sms": {"twilio": _twilio_sms, "msg91": _msg91_sms},
    "whatsapp": {"waba": _waba, "twilio": _twilio_whatsapp},
    "email": {"resend": _resend, "smtp": _smtp},
}


def build_channel(channel: str, selected: str, fallback_enabled: bool, s: Settings) -> ChannelProvider:
    """Build one channel's provider, optionally wrapped in a fallback."""
    builders = PROVIDER_REGISTRY[channel]
    key = selected.strip().lower()
    if key not in builders:
        raise ValueError(
            f"Unknown {channel} provider '{selected}'. "
            f"Choose one of: {', '.join(builders)}"
        )

    primary = builders[key](s)
    if not fallback_enabled:
        return primary

    secondary_key = next(name for name in builders if name != key)
    return FallbackProvider(
        primary,
        builders[secondary_key](s),
        timeout_seconds=s.PROVIDER_TIMEOUT_SECONDS,
        channel=channel,
    )


def build_channel_providers(s: Settings) -> ChannelProviders:
    providers = ChannelProviders(
        sms=build_channel("sms", s.SMS_PROVIDER, s.SMS_FALLBACK_ENABLED, s),
        whatsapp=build_channel("whatsapp", s.WHATSAPP_PROVIDER, s.WHATSAPP_FALLBACK_ENABLED, s),
        email=build_channel("email", s.EMAIL_PROVIDER, s.EMAIL_FALLBACK_ENABLED, s),
    )
    for channel, provider in (
        ("sms", providers.sms),
        ("whatsapp", providers.whatsapp),
        ("email", providers.email),
    ):
        logger.info(
            "Channel %s → %s (%s)", channel, provider.get_name(),
            "available" if provider.is_available() else "simulation",
        )
    return providers
