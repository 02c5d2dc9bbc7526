"""
sql_repository.py — SQLAlchemy implementations of the dispatch stores.

Each store takes an ``async_sessionmaker`` and opens one short session per
call, so stores are safe to share across concurrent requests.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alerts.models import (
    NotificationRecord,
    PanicAlert,
    PanicStatus,
    PatientProfile,
    Representative,
)
from backend.app.alerts.repository import validate_alert_patch
from backend.app.alerts.tables import (
    HospitalRow,
    NotificationRow,
    PanicAlertRow,
    RepresentativeRow,
    UserRow,
)
from backend.app.core.errors import NotFoundError
from backend.app.spatial.hospital_matcher import Facility
from backend.app.spatial.radius_utils import Coordinate, bounding_box, longitude_ranges

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ domain mapping
# ═══════════════════════════════════════════════════════════════════════════

def representative_from_row(row: RepresentativeRow) -> Representative:
    return Representative(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        phone=row.phone,
        email=row.email,
        relationship=row.relationship_type or "",
        priority=row.priority,
        notify_on_emergency=row.notify_on_emergency,
        notify_on_access=row.notify_on_access,
        is_donor_spokesperson=row.is_donor_spokesperson,
    )


def profile_from_row(row: UserRow) -> PatientProfile:
    return PatientProfile(
        user_id=row.id,
        name=row.name,
        preferred_locale=row.preferred_language or "es",
        representatives=[representative_from_row(r) for r in row.representatives],
    )


def facility_from_row(row: HospitalRow) -> Facility:
    return Facility(
        id=row.id,
        name=row.name,
        latitude=row.latitude,
        longitude=row.longitude,
        specialties=tuple(row.specialties or ()),
        phone=row.phone,
        emergency_phone=row.emergency_phone,
        address=row.address,
        has_emergency=bool(row.has_emergency),
        has_icu=bool(row.has_icu),
        has_trauma=bool(row.has_trauma),
    )


def alert_from_row(row: PanicAlertRow) -> PanicAlert:
    return PanicAlert(
        id=row.id,
        user_id=row.user_id,
        latitude=row.latitude,
        longitude=row.longitude,
        accuracy=row.accuracy,
        message=row.message,
        status=PanicStatus(row.status),
        nearby_hospitals=list(row.nearby_hospitals or []),
        notifications_sent=row.notifications_sent,
        created_at=row.created_at,
        cancelled_at=row.cancelled_at,
    )


def alert_to_row(alert: PanicAlert) -> PanicAlertRow:
    return PanicAlertRow(
        id=alert.id,
        user_id=alert.user_id,
        latitude=alert.latitude,
        longitude=alert.longitude,
        accuracy=alert.accuracy,
        message=alert.message,
        status=alert.status.value,
        nearby_hospitals=alert.nearby_hospitals,
        notifications_sent=alert.notifications_sent,
        created_at=alert.created_at,
        cancelled_at=alert.cancelled_at,
    )


def notification_to_row(record: NotificationRecord) -> NotificationRow:
    return NotificationRow(
        id=record.id,
        recipient=record.recipient,
        type=record.type.value,
        channel=record.channel.value,
        subject=record.subject,
        body=record.body,
        status=record.status.value,
        message_id=record.message_id,
        error_message=record.error_message,
        metadata_=record.metadata,
        created_at=record.created_at,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class SqlUserStore:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def get_user_with_representatives(self, user_id: str) -> Optional[PatientProfile]:
        async with self.session_factory() as session:
            row = await session.get(UserRow, user_id)
            return profile_from_row(row) if row else None

    async def get_conditions(self, user_id: str) -> List[str]:
        async with self.session_factory() as session:
            conditions = await session.scalar(
                select(UserRow.conditions).where(UserRow.id == user_id)
            )
            return [str(c) for c in conditions or []]


class SqlAlertStore:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def create_alert(self, alert: PanicAlert) -> PanicAlert:
        async with self.session_factory() as session:
            row = alert_to_row(alert)
            session.add(row)
            await session.commit()
            return alert_from_row(row)

    async def update_alert(self, alert_id: str, patch: Mapping[str, Any]) -> PanicAlert:
        async with self.session_factory() as session:
            # row lock held until commit, so the status check below sees the latest write
            row = await session.get(PanicAlertRow, alert_id, with_for_update=True)
            if row is None:
                raise NotFoundError("PanicAlert", alert_id=alert_id)
            validate_alert_patch(alert_from_row(row), patch)

            for key, value in patch.items():
                if key == "status":
                    value = PanicStatus(value).value
                setattr(row, key, value)
            await session.commit()
            return alert_from_row(row)

    async def find_alert(
        self, alert_id: str, user_id: str, status: Optional[PanicStatus] = None,
    ) -> Optional[PanicAlert]:
        stmt = select(PanicAlertRow).where(
            PanicAlertRow.id == alert_id,
            PanicAlertRow.user_id == user_id,
        )
        if status is not None:
            stmt = stmt.where(PanicAlertRow.status == status.value)
        async with self.session_factory() as session:
            row = await session.scalar(stmt)
            return alert_from_row(row) if row else None

    async def list_alerts(
        self, user_id: str, status: Optional[PanicStatus] = None, limit: Optional[int] = None,
    ) -> List[PanicAlert]:
        stmt = (
            select(PanicAlertRow)
            .where(PanicAlertRow.user_id == user_id)
            .order_by(PanicAlertRow.created_at.desc())
        )
        if status is not None:
            stmt = stmt.where(PanicAlertRow.status == status.value)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            return [alert_from_row(r) for r in rows]


class SqlNotificationStore:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def create_notification_record(self, record: NotificationRecord) -> NotificationRecord:
        async with self.session_factory() as session:
            session.add(notification_to_row(record))
            await session.commit()
        return record


def nearby_facilities_query(latitude: float, longitude: float, radius_km: float):
    """Active hospitals inside the bounding box of the search circle."""
    min_lat, max_lat, min_lon, max_lon = bounding_box(Coordinate(latitude, longitude), radius_km)
    return select(HospitalRow).where(
        HospitalRow.is_active.is_(True),
        HospitalRow.latitude.between(min_lat, max_lat),
        or_(*(
            HospitalRow.longitude.between(lo, hi)
            for lo, hi in longitude_ranges(min_lon, max_lon)
        )),
    )


class SqlFacilityDirectory:
    """Bounding-box prefilter in SQL; the matcher does the exact distance check."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def query_near(self, latitude: float, longitude: float, radius_km: float) -> List[Facility]:
        stmt = nearby_facilities_query(latitude, longitude, radius_km)
        async with self.session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [facility_from_row(r) for r in rows]
