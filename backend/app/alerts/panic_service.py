"""
panic_service.py — Panic alert orchestration.

═══════════════════════════════════════════════════════════════════════════
ACTIVATION PIPELINE
═══════════════════════════════════════════════════════════════════════════

    validate coordinates            InvalidLocationError
        │
    load profile + conditions       NotFoundError("User")
        │
    matcher.find_nearby             20 km → 100 km escalation, never raises
        │
    alerts.create_alert             status ACTIVE, facility snapshot frozen
        │
    dispatcher.notify_all           per-recipient fan-out, never raises
        │
    alerts.update_alert             notifications_sent attached once
        │
    broadcaster.publish             best-effort, failures logged
        │
    PanicActivation

Only invalid input and unknown users surface as errors. A dispatch
where nobody could be reached is still a successful activation; the
per-recipient results say what happened.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    ACTIVE ──cancel──▶ CANCELLED (terminal)

Cancel looks the alert up by (id, owner, ACTIVE). Missing, foreign and
already-cancelled alerts all produce NotFoundOrInactiveError.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from backend.app.alerts.broadcaster import (
    Broadcaster,
    representative_channel,
    user_channel,
)
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    EventContext,
    EventType,
    HospitalContact,
    PanicActivation,
    PanicAlert,
    PanicStatus,
)
from backend.app.alerts.repository import AlertStateError, AlertStore, UserStore
from backend.app.core.errors import (
    InvalidLocationError,
    NotFoundError,
    NotFoundOrInactiveError,
)
from backend.app.spatial.hospital_matcher import HospitalCandidate, HospitalMatcher
from backend.app.spatial.radius_utils import Coordinate, parse_coordinate

logger = logging.getLogger(__name__)

HISTORY_DEFAULT_LIMIT = 10
HISTORY_MAX_LIMIT = 100


def validate_location(latitude: Any, longitude: Any) -> Coordinate:
    """Coordinate from untrusted input, or InvalidLocationError."""
    coordinate = parse_coordinate(latitude, longitude)
    if coordinate is None:
        raise InvalidLocationError(
            "Latitude must be in [-90, 90] and longitude in [-180, 180]",
            latitude=str(latitude),
            longitude=str(longitude),
        )
    return coordinate


def hospital_contacts(candidates: Sequence[HospitalCandidate]) -> List[HospitalContact]:
    """Ranked facilities as they appear in messages; emergency line preferred."""
    return [
        HospitalContact(
            name=c.facility.name,
            distance_km=c.distance_km,
            phone=c.facility.contact_phone,
        )
        for c in candidates
    ]


async def safe_publish(
    broadcaster: Broadcaster,
    channel_key: str,
    event: str,
    payload: Dict[str, Any],
) -> None:
    try:
        await broadcaster.publish(channel_key, event, payload)
    except Exception:
        logger.exception("Broadcast of %s to %s failed", event, channel_key)


class PanicAlertService:
    """
    Entry point for panic alerts.

    Usage:
        service = PanicAlertService(users, alerts, matcher, dispatcher, broadcaster)
        activation = await service.activate("user-1", 19.4326, -99.1332)
        await service.cancel(activation.alert_id, "user-1")
    """

    def __init__(
        self,
        users: UserStore,
        alerts: AlertStore,
        matcher: HospitalMatcher,
        dispatcher: NotificationDispatcher,
        broadcaster: Broadcaster,
        *,
        default_locale: str = "es",
    ):
        self.users = users
        self.alerts = alerts
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.default_locale = default_locale

    # ── Activation ──

    async def activate(
        self,
        user_id: str,
        latitude: Any,
        longitude: Any,
        accuracy: Optional[float] = None,
        message: Optional[str] = None,
    ) -> PanicActivation:
        """
        Raise a panic alert and notify the user's emergency representatives.

        Raises
        ------
        InvalidLocationError
            Coordinates are malformed or out of range.
        NotFoundError
            The user does not exist.
        """
        start = time.perf_counter()
        origin = validate_location(latitude, longitude)

        profile = await self.users.get_user_with_representatives(user_id)
        if profile is None:
            raise NotFoundError("User", user_id=user_id)

        representatives = profile.emergency_contacts()
        conditions = await self.users.get_conditions(user_id)

        candidates = await self.matcher.find_nearby(origin, conditions)
        snapshot = [c.to_snapshot() for c in candidates]

        alert = await self.alerts.create_alert(PanicAlert(
            user_id=user_id,
            latitude=origin.latitude,
            longitude=origin.longitude,
            accuracy=accuracy,
            message=message,
            status=PanicStatus.ACTIVE,
            nearby_hospitals=snapshot,
        ))
        logger.info(
            "Panic alert %s created for user %s: %d hospitals, %d representatives",
            alert.id, user_id, len(snapshot), len(representatives),
            extra={
                "alert_id": alert.id,
                "user_id": user_id,
                "hospital_count": len(snapshot),
                "recipient_count": len(representatives),
            },
        )

        context = EventContext(
            event_type=EventType.PANIC,
            patient_name=profile.name,
            latitude=origin.latitude,
            longitude=origin.longitude,
            nearest_hospital=candidates[0].name if candidates else None,
            nearby_hospitals=hospital_contacts(candidates),
            message=message,
            locale=profile.preferred_locale or self.default_locale,
        )
        results = await self.dispatcher.notify_all(representatives, context)

        try:
            await self.alerts.update_alert(
                alert.id, {"notifications_sent": [r.to_dict() for r in results]},
            )
        except Exception:
            # notifications already went out; the activation still stands
            logger.exception(
                "Could not attach delivery snapshot to alert %s", alert.id,
                extra={"alert_id": alert.id},
            )

        payload = {
            "alert_id": alert.id,
            "patient_name": profile.name,
            "patient_id": user_id,
            "conditions": list(conditions),
            "location": {
                "latitude": origin.latitude,
                "longitude": origin.longitude,
                "accuracy": accuracy,
            },
            "nearby_hospitals": snapshot,
            "message": message,
            "timestamp": alert.created_at.isoformat(),
        }
        await safe_publish(self.broadcaster, representative_channel(user_id), "panic-alert", payload)
        await safe_publish(self.broadcaster, user_channel(user_id), "panic-alert-sent", {
            "alert_id": alert.id,
            "representatives_notified": sum(1 for r in results if r.reached),
            "nearby_hospitals": len(snapshot),
            "timestamp": alert.created_at.isoformat(),
        })

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Panic alert %s dispatched: %d/%d reached (%.0fms)",
            alert.id, sum(1 for r in results if r.reached), len(results), duration_ms,
            extra={"alert_id": alert.id, "duration_ms": duration_ms},
        )

        return PanicActivation(
            alert_id=alert.id,
            status=alert.status,
            nearby_hospitals=snapshot,
            representatives_notified=results,
            created_at=alert.created_at,
        )

    # ── Cancellation ──

    async def cancel(self, alert_id: str, user_id: str) -> PanicAlert:
        """
        ACTIVE → CANCELLED. Raises NotFoundOrInactiveError otherwise.

        The store re-checks the status inside its write, so of two
        concurrent cancels exactly one wins.
        """
        alert = await self.alerts.find_alert(alert_id, user_id, status=PanicStatus.ACTIVE)
        if alert is None:
            raise NotFoundOrInactiveError()

        cancelled_at = datetime.now(timezone.utc)
        try:
            updated = await self.alerts.update_alert(
                alert_id, {"status": PanicStatus.CANCELLED, "cancelled_at": cancelled_at},
            )
        except (AlertStateError, NotFoundError) as exc:
            logger.info(
                "Cancel of alert %s lost to a concurrent change: %s", alert_id, exc,
                extra={"alert_id": alert_id, "user_id": user_id},
            )
            raise NotFoundOrInactiveError() from exc

        logger.info(
            "Panic alert %s cancelled by user %s", alert_id, user_id,
            extra={"alert_id": alert_id, "user_id": user_id},
        )

        await safe_publish(self.broadcaster, representative_channel(user_id), "panic-cancelled", {
            "alert_id": alert_id,
            "patient_id": user_id,
            "timestamp": cancelled_at.isoformat(),
        })
        return updated

    # ── Read-only projections ──

    async def list_active(self, user_id: str) -> List[PanicAlert]:
        return await self.alerts.list_alerts(user_id, status=PanicStatus.ACTIVE)

    async def list_history(self, user_id: str, limit: int = HISTORY_DEFAULT_LIMIT) -> List[PanicAlert]:
        limit = max(1, min(int(limit), HISTORY_MAX_LIMIT))
        return await self.alerts.list_alerts(user_id, limit=limit)

    async def get_by_id(self, alert_id: str, user_id: str) -> Optional[PanicAlert]:
        return await self.alerts.find_alert(alert_id, user_id)
