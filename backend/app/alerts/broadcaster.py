"""
broadcaster.py — Real-time event publishing.

    publish(channel_key, event, payload)

Channel keys:
    representative-<user_id>   events for the patient's representatives
    user-<user_id>             confirmations for the patient's own devices

Events: panic-alert, panic-alert-sent, panic-cancelled,
        qr-access-alert, qr-access-notification

Backends:
    InMemoryBroadcaster   records events, fans out to async subscribers
    RedisBroadcaster      Redis pub/sub, JSON envelope {"event", "payload"}

Publishing is best-effort: callers log and swallow failures so a dead
socket layer never fails an emergency activation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


def representative_channel(user_id: str) -> str:
    return f"representative-{user_id}"


def user_channel(user_id: str) -> str:
    return f"user-{user_id}"


class Broadcaster(Protocol):
    async def publish(self, channel_key: str, event: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class PublishedEvent:
    channel_key: str
    event: str
    payload: Dict[str, Any]


@dataclass
class InMemoryBroadcaster:
    """In-process bus. Keeps a log of everything published."""
    events: List[PublishedEvent] = field(default_factory=list)
    subscribers: List[Subscriber] = field(default_factory=list)

    def subscribe(self, callback: Subscriber) -> None:
        self.subscribers.append(callback)

    def events_for(self, channel_key: str) -> List[PublishedEvent]:
        return [e for e in self.events if e.channel_key == channel_key]

    async def publish(self, channel_key: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append(PublishedEvent(channel_key, event, payload))
        logger.debug("Published %s → %s", event, channel_key)
        for callback in list(self.subscribers):
            try:
                await callback(channel_key, event, payload)
            except Exception:
                logger.exception("Subscriber failed for %s on %s", event, channel_key)


class RedisBroadcaster:
    """
    Redis pub/sub publisher.

    The client is created lazily from ``redis_url`` unless one is injected.
    """

    def __init__(self, redis_url: str, *, client: Any = None):
        self.redis_url = redis_url
        self._client = client

    async def _get_redis(self):
        """Get or create async Redis client."""
        if self._client is None:
            import redis.asyncio as aioredis
            self._client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis broadcaster connected: %s", self.redis_url)
        return self._client

    async def publish(self, channel_key: str, event: str, payload: Dict[str, Any]) -> None:
        client = await self._get_redis()
        message = json.dumps({"event": event, "payload": payload}, default=str)
        receivers = await client.publish(channel_key, message)
        logger.debug("Published %s → %s (%s receivers)", event, channel_key, receivers)

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_broadcaster(backend: str, redis_url: Optional[str] = None) -> Broadcaster:
    if backend == "redis":
        return RedisBroadcaster(redis_url or "redis://localhost:6379/0")
    if backend == "memory":
        return InMemoryBroadcaster()
    raise ValueError(f"Unknown broadcaster backend '{backend}'. Choose memory or redis")
