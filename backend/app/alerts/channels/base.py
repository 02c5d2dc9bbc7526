"""
base.py — Channel provider contracts and the fallback decorator.

Every concrete provider (Twilio, MSG91, WABA, Resend, SMTP) satisfies one
of the protocols below. The dispatcher only ever sees the protocol.

═══════════════════════════════════════════════════════════════════════════
PROVIDER CONTRACT
═══════════════════════════════════════════════════════════════════════════

    async send(params) → SendResult     never raises
    is_available()     → bool           credentials configured
    get_name()         → str            stable id used in audit metadata

A provider that cannot deliver returns ``SendResult(success=False)``.
Transport problems are raised internally as TransportError and converted
at the provider boundary; ``guarded_send`` is the second line for
anything that still escapes (bugs, hangs).

═══════════════════════════════════════════════════════════════════════════
FALLBACK DECORATOR
═══════════════════════════════════════════════════════════════════════════

    FallbackProvider(primary, secondary)

        primary available? ──yes──▶ guarded_send(primary) ──ok──▶ return
              │no                          │fail / timeout
              ▼                            ▼
        secondary available? ──yes──▶ guarded_send(secondary) ─▶ return
              │no
              ▼
        SendResult(success=False, "No <channel> provider available")

Both hops are bounded by the provider timeout, so the whole decorated
call takes at most 2 × timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from backend.app.alerts.models import NotificationParams, SendResult
from backend.app.core.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 8.0


# ═══════════════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class ChannelProvider(Protocol):
    async def send(self, params: NotificationParams) -> SendResult:
        ...

    def is_available(self) -> bool:
        ...

    def get_name(self) -> str:
        ...


class SMSProvider(ChannelProvider, Protocol):
    """Short text to a phone number."""


class WhatsAppProvider(ChannelProvider, Protocol):
    """WhatsApp message, template first then free text."""


class EmailProvider(ChannelProvider, Protocol):
    """HTML email."""


# ═══════════════════════════════════════════════════════════════════════════
# Shared HTTP plumbing
# ═══════════════════════════════════════════════════════════════════════════

class HTTPProvider:
    """
    Base for providers that talk JSON/form over HTTPS.

    The client is created lazily. Tests pass their own ``client`` built on
    ``httpx.MockTransport``.
    """

    name = "http"

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._http_client = client

    def get_name(self) -> str:
        return self.name

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        POST and decode the JSON body.

        Raises TransportError on network failure or non-2xx status, with
        the provider's own error message when the body carries one.
        """
        client = await self._get_client()
        try:
            response = await client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(self.get_name(), str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            raise TransportError(
                self.get_name(),
                _extract_error(response),
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return {}


def _extract_error(response: httpx.Response) -> str:
    """Pull a readable message out of a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"

    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])          # Meta Graph
        if isinstance(err, str):
            return err
        if body.get("message"):
            return str(body["message"])         # Twilio, Resend, MSG91
    return f"HTTP {response.status_code}"


# ═══════════════════════════════════════════════════════════════════════════
# Guarded send
# ═══════════════════════════════════════════════════════════════════════════

async def guarded_send(
    provider: ChannelProvider,
    params: NotificationParams,
    timeout_seconds: float,
) -> SendResult:
    """
    Call ``provider.send`` bounded by ``timeout_seconds``.

    Timeouts and unexpected exceptions become a failed SendResult.
    Cancellation of the caller still propagates.
    """
    name = provider.get_name()
    try:
        return await asyncio.wait_for(provider.send(params), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            "[%s] send timed out after %.1fs", name, timeout_seconds,
            extra={"provider": name},
        )
        return SendResult.failed(name, f"Timed out after {timeout_seconds:.1f}s")
    except TransportError as exc:
        return SendResult.failed(name, exc.reason)
    except Exception as exc:
        logger.exception("[%s] send raised", name, extra={"provider": name})
        return SendResult.failed(name, str(exc) or type(exc).__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Fallback decorator
# ═══════════════════════════════════════════════════════════════════════════

class FallbackProvider:
    """
    Primary → secondary provider composition.

    Satisfies the same protocol as the providers it wraps, so the
    dispatcher cannot tell a decorated provider from a plain one.
    """

    def __init__(
        self,
        primary: ChannelProvider,
        secondary: ChannelProvider,
        *,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT,
        channel: str = "channel",
    ):
        self.primary = primary
        self.secondary = secondary
        self.timeout_seconds = timeout_seconds
        self.channel = channel

    def get_name(self) -> str:
        return f"{self.primary.get_name()}+fallback:{self.secondary.get_name()}"

    def is_available(self) -> bool:
        return self.primary.is_available() or self.secondary.is_available()

    async def send(self, params: NotificationParams) -> SendResult:
        result: Optional[SendResult] = None
        if self.primary.is_available():
            result = await guarded_send(self.primary, params, self.timeout_seconds)
            if result.success:
                return result
            logger.warning(
                "[%s] primary %s failed (%s), trying %s",
                self.channel.upper(), self.primary.get_name(), result.error,
                self.secondary.get_name(),
                extra={"provider": self.primary.get_name()},
            )
        else:
            logger.info(
                "[%s] primary %s unavailable, using %s",
                self.channel.upper(), self.primary.get_name(),
                self.secondary.get_name(),
            )

        if self.secondary.is_available():
            return await guarded_send(self.secondary, params, self.timeout_seconds)

        if result is not None:
            # primary was tried and failed; report its error
            return result
        return SendResult.failed(
            self.get_name(), f"No {self.channel} provider available",
        )

    async def close(self) -> None:
        for provider in (self.primary, self.secondary):
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
