"""
ORM tables backing the SQL stores.

═══════════════════════════════════════════════════════════════════════════
DATABASE SCHEMA
═══════════════════════════════════════════════════════════════════════════

Table: panic_alerts
─────────────────────────────────────────────────────────────────────────────
| Column             | Type         | Description                          |
|--------------------|--------------|--------------------------------------|
| id                 | VARCHAR PK   | uuid hex                             |
| user_id            | VARCHAR FK   | owner                                |
| latitude/longitude | FLOAT        | trigger location                     |
| accuracy           | FLOAT NULL   | GPS accuracy in metres               |
| message            | TEXT NULL    | optional note from the patient       |
| status             | VARCHAR(16)  | ACTIVE | CANCELLED                   |
| nearby_hospitals   | JSON         | facility snapshot, frozen            |
| notifications_sent | JSON NULL    | delivery snapshot, attached once     |
| created_at         | TIMESTAMPTZ  |                                      |
| cancelled_at       | TIMESTAMPTZ  |                                      |
─────────────────────────────────────────────────────────────────────────────

Table: notifications — one row per send attempt, never updated.
Table: hospitals     — facility directory, (latitude, longitude) indexed
                       for the bounding-box prefilter.
Tables: users, representatives — read-only from dispatch.

Query Patterns:
1. Cancel:   WHERE id = ? AND user_id = ? AND status = 'ACTIVE'
2. History:  WHERE user_id = ? ORDER BY created_at DESC LIMIT n
3. Nearby:   WHERE latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?
═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    preferred_language: Mapped[str] = mapped_column(String(8), default="es")
    # plain list of condition names; the encrypted profile lives elsewhere
    conditions: Mapped[List[str]] = mapped_column(JSON, default=list)

    representatives: Mapped[List["RepresentativeRow"]] = relationship(
        back_populates="user", lazy="selectin", order_by="RepresentativeRow.priority",
    )


class RepresentativeRow(Base):
    __tablename__ = "representatives"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    relationship_type: Mapped[str] = mapped_column("relationship", String(64), default="")
    priority: Mapped[int] = mapped_column(Integer, default=1)
    notify_on_emergency: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_access: Mapped[bool] = mapped_column(Boolean, default=True)
    is_donor_spokesperson: Mapped[bool] = mapped_column(Boolean, default=False)

    user: Mapped[UserRow] = relationship(back_populates="representatives")


class HospitalRow(Base):
    __tablename__ = "hospitals"
    __table_args__ = (Index("ix_hospitals_lat_lng", "latitude", "longitude"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(300))
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    emergency_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    specialties: Mapped[List[str]] = mapped_column(JSON, default=list)
    has_emergency: Mapped[bool] = mapped_column(Boolean, default=False)
    has_icu: Mapped[bool] = mapped_column(Boolean, default=False)
    has_trauma: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class PanicAlertRow(Base):
    __tablename__ = "panic_alerts"
    __table_args__ = (Index("ix_panic_alerts_user_created", "user_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    latitude: Mapped[float] = mapped_column(Float)
    longitude: Mapped[float] = mapped_column(Float)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE")
    nearby_hospitals: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    notifications_sent: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    recipient: Mapped[str] = mapped_column(String(254), index=True)
    type: Mapped[str] = mapped_column(String(32))
    channel: Mapped[str] = mapped_column(String(16))
    subject: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    body: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(16))
    message_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
