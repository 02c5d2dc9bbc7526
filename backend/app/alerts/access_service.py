"""
access_service.py — Notify representatives when emergency data is opened.

Triggered when medical staff scan the patient's QR/NFC token. Nothing is
persisted beyond the per-attempt notification records; the hospital
search only runs when the scan came with a location.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from backend.app.alerts.broadcaster import (
    Broadcaster,
    representative_channel,
    user_channel,
)
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import EmergencyAccessResult, EventContext, EventType
from backend.app.alerts.panic_service import (
    hospital_contacts,
    safe_publish,
    validate_location,
)
from backend.app.alerts.repository import UserStore
from backend.app.core.errors import NotFoundError
from backend.app.spatial.hospital_matcher import HospitalMatcher

logger = logging.getLogger(__name__)


class EmergencyAccessService:

    def __init__(
        self,
        users: UserStore,
        matcher: HospitalMatcher,
        dispatcher: NotificationDispatcher,
        broadcaster: Broadcaster,
        *,
        default_locale: str = "es",
    ):
        self.users = users
        self.matcher = matcher
        self.dispatcher = dispatcher
        self.broadcaster = broadcaster
        self.default_locale = default_locale

    async def notify_access(
        self,
        user_id: str,
        accessor_name: str,
        latitude: Any = None,
        longitude: Any = None,
        location_name: Optional[str] = None,
        accessor_role: Optional[str] = None,
    ) -> EmergencyAccessResult:
        """
        Tell the user's access-notify representatives who opened their data.

        Raises InvalidLocationError for malformed coordinates and
        NotFoundError for an unknown user.
        """
        origin = None
        if latitude is not None or longitude is not None:
            origin = validate_location(latitude, longitude)

        profile = await self.users.get_user_with_representatives(user_id)
        if profile is None:
            raise NotFoundError("User", user_id=user_id)

        representatives = profile.access_contacts()

        candidates = []
        if origin is not None:
            conditions = await self.users.get_conditions(user_id)
            candidates = await self.matcher.find_nearby(origin, conditions)
        snapshot = [c.to_snapshot() for c in candidates]

        context = EventContext(
            event_type=EventType.QR_ACCESS,
            patient_name=profile.name,
            latitude=origin.latitude if origin else None,
            longitude=origin.longitude if origin else None,
            accessor_name=accessor_name,
            location_name=location_name,
            nearest_hospital=candidates[0].name if candidates else None,
            nearby_hospitals=hospital_contacts(candidates),
            locale=profile.preferred_locale or self.default_locale,
        )
        results = await self.dispatcher.notify_all(representatives, context)

        result = EmergencyAccessResult(
            user_id=user_id,
            accessor_name=accessor_name,
            nearby_hospitals=snapshot,
            representatives_notified=results,
        )
        logger.info(
            "Emergency access to user %s by %s: %d/%d representatives reached",
            user_id, accessor_name, sum(1 for r in results if r.reached), len(results),
            extra={"user_id": user_id, "recipient_count": len(results)},
        )

        location = None
        if origin is not None:
            location = {"latitude": origin.latitude, "longitude": origin.longitude}

        await safe_publish(self.broadcaster, representative_channel(user_id), "qr-access-alert", {
            "patient_name": profile.name,
            "patient_id": user_id,
            "accessor_name": accessor_name,
            "accessor_role": accessor_role,
            "location": location,
            "location_name": location_name,
            "nearby_hospitals": snapshot,
            "timestamp": result.accessed_at.isoformat(),
        })
        await safe_publish(self.broadcaster, user_channel(user_id), "qr-access-notification", {
            "accessor_name": accessor_name,
            "accessor_role": accessor_role,
            "location_name": location_name,
            "representatives_notified": sum(1 for r in results if r.reached),
            "timestamp": result.accessed_at.isoformat(),
        })
        return result
