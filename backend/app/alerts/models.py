"""
models.py — Shared data structures for emergency dispatch.

Defines:
    • EventType          — what triggered the dispatch (panic, QR access)
    • NotificationChannel — SMS / WhatsApp / Email
    • ChannelStatus      — per-channel outcome for one recipient
    • Representative     — a trusted contact with priority + notify flags
    • NotificationParams — provider-agnostic send request
    • SendResult         — provider-agnostic send outcome
    • NotificationRecord — audit row, one per attempt, never updated
    • RecipientResult    — aggregated outcome for one representative
    • PanicAlert         — the persisted alert with its frozen snapshots

═══════════════════════════════════════════════════════════════════════════
PANIC ALERT LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    activate ──▶ ACTIVE ──cancel──▶ CANCELLED   (terminal)

    nearby_hospitals    frozen at creation
    notifications_sent  attached once, after dispatch completes

Alerts are never deleted. Both snapshots describe what was actually
sent at the time, so they stay valid even if the directory changes.

═══════════════════════════════════════════════════════════════════════════
RECIPIENT OUTCOME
═══════════════════════════════════════════════════════════════════════════

    Channel     Attempted when             Status
    ───────     ──────────────────────     ─────────────────────────
    SMS         phone on file              sent | failed | skipped
    WhatsApp    phone on file              sent | failed | skipped
    Email       email on file              sent | failed | skipped

A recipient counts as reached if any channel reports ``sent``.
Delivery failure is data, never an exception.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class EventType(str, Enum):
    """What triggered a dispatch."""
    PANIC     = "PANIC"
    QR_ACCESS = "QR_ACCESS"


class NotificationChannel(str, Enum):
    """Delivery channels."""
    SMS      = "SMS"
    WHATSAPP = "WHATSAPP"
    EMAIL    = "EMAIL"


class NotificationType(str, Enum):
    EMERGENCY_ALERT     = "EMERGENCY_ALERT"
    ACCESS_NOTIFICATION = "ACCESS_NOTIFICATION"


class DeliveryStatus(str, Enum):
    """Status stored on a NotificationRecord."""
    SENT   = "SENT"
    FAILED = "FAILED"


class ChannelStatus(str, Enum):
    """Per-channel outcome reported back to the caller."""
    SENT    = "sent"
    FAILED  = "failed"
    SKIPPED = "skipped"   # no contact data for this channel


class PanicStatus(str, Enum):
    ACTIVE    = "ACTIVE"
    CANCELLED = "CANCELLED"


NOTIFICATION_TYPE_BY_EVENT: Dict[EventType, NotificationType] = {
    EventType.PANIC: NotificationType.EMERGENCY_ALERT,
    EventType.QR_ACCESS: NotificationType.ACCESS_NOTIFICATION,
}


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# People
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Representative:
    """
    A trusted contact of the patient.

    Attributes
    ----------
    priority : int
        Lower values are contacted first. Ties keep insertion order.
    notify_on_emergency : bool
        Included in panic dispatches.
    notify_on_access : bool
        Included in QR emergency-access dispatches.
    is_donor_spokesperson : bool
        Carried for the organ-donation flow; unused by dispatch.
    """
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    user_id: Optional[str] = None
    relationship: str = ""
    priority: int = 1
    notify_on_emergency: bool = True
    notify_on_access: bool = True
    is_donor_spokesperson: bool = False


@dataclass
class PatientProfile:
    """What the user store returns for a dispatch."""
    user_id: str
    name: str
    preferred_locale: str = "es"
    representatives: List[Representative] = field(default_factory=list)

    def emergency_contacts(self) -> List[Representative]:
        """Panic recipients, stable-sorted by priority."""
        return sorted(
            (r for r in self.representatives if r.notify_on_emergency),
            key=lambda r: r.priority,
        )

    def access_contacts(self) -> List[Representative]:
        """QR-access recipients, stable-sorted by priority."""
        return sorted(
            (r for r in self.representatives if r.notify_on_access),
            key=lambda r: r.priority,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Provider contract payloads
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class HospitalContact:
    """A facility as it appears inside an outbound message."""
    name: str
    distance_km: float
    phone: Optional[str] = None


@dataclass
class NotificationParams:
    """Provider-agnostic send request for one recipient on one channel."""
    to: str
    patient_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    event_type: EventType = EventType.PANIC
    accessor_name: Optional[str] = None
    location_name: Optional[str] = None
    nearest_hospital: Optional[str] = None
    nearby_hospitals: List[HospitalContact] = field(default_factory=list)
    message: Optional[str] = None
    locale: str = "es"

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class SendResult:
    """Outcome of one provider send. Providers return this, never raise."""
    success: bool
    provider: str
    message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, provider: str, error: str) -> "SendResult":
        return cls(success=False, provider=provider, error=error)


@dataclass
class EventContext:
    """
    Everything the dispatcher needs to know about the triggering event.

    Shared by every recipient of one dispatch.
    """
    event_type: EventType
    patient_name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accessor_name: Optional[str] = None
    location_name: Optional[str] = None
    nearest_hospital: Optional[str] = None
    nearby_hospitals: List[HospitalContact] = field(default_factory=list)
    message: Optional[str] = None
    locale: str = "es"

    def params_for(self, to: str) -> NotificationParams:
        return NotificationParams(
            to=to,
            patient_name=self.patient_name,
            latitude=self.latitude,
            longitude=self.longitude,
            event_type=self.event_type,
            accessor_name=self.accessor_name,
            location_name=self.location_name,
            nearest_hospital=self.nearest_hospital,
            nearby_hospitals=list(self.nearby_hospitals),
            message=self.message,
            locale=self.locale,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Audit + results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class NotificationRecord:
    """Audit row for one send attempt. Created once, never updated."""
    recipient: str
    type: NotificationType
    channel: NotificationChannel
    body: str
    status: DeliveryStatus
    subject: Optional[str] = None
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recipient": self.recipient,
            "type": self.type.value,
            "channel": self.channel.value,
            "subject": self.subject,
            "body": self.body,
            "status": self.status.value,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RecipientResult:
    """Aggregated dispatch outcome for one representative."""
    representative_id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    sms_status: ChannelStatus = ChannelStatus.SKIPPED
    whatsapp_status: ChannelStatus = ChannelStatus.SKIPPED
    email_status: ChannelStatus = ChannelStatus.SKIPPED
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def reached(self) -> bool:
        """True if at least one channel succeeded."""
        return ChannelStatus.SENT in (
            self.sms_status, self.whatsapp_status, self.email_status,
        )

    @classmethod
    def total_failure(cls, representative: Representative, error: str) -> "RecipientResult":
        return cls(
            representative_id=representative.id,
            name=representative.name,
            phone=representative.phone,
            email=representative.email,
            sms_status=ChannelStatus.FAILED,
            whatsapp_status=ChannelStatus.FAILED,
            email_status=ChannelStatus.FAILED,
            error=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "representative_id": self.representative_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "sms_status": self.sms_status.value,
            "whatsapp_status": self.whatsapp_status.value,
            "email_status": self.email_status.value,
            "message_id": self.message_id,
            "error": self.error,
            "reached": self.reached,
        }


@dataclass
class PanicAlert:
    """A persisted panic alert."""
    user_id: str
    latitude: float
    longitude: float
    id: str = field(default_factory=_generate_id)
    accuracy: Optional[float] = None
    message: Optional[str] = None
    status: PanicStatus = PanicStatus.ACTIVE
    nearby_hospitals: List[Dict[str, Any]] = field(default_factory=list)
    notifications_sent: Optional[List[Dict[str, Any]]] = None
    created_at: datetime = field(default_factory=_now)
    cancelled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "accuracy": self.accuracy,
            "message": self.message,
            "status": self.status.value,
            "nearby_hospitals": self.nearby_hospitals,
            "notifications_sent": self.notifications_sent,
            "created_at": self.created_at.isoformat(),
            "cancelled_at": (
                self.cancelled_at.isoformat() if self.cancelled_at else None
            ),
        }


@dataclass
class PanicActivation:
    """Returned by PanicAlertService.activate."""
    alert_id: str
    status: PanicStatus
    nearby_hospitals: List[Dict[str, Any]]
    representatives_notified: List[RecipientResult]
    created_at: datetime

    @property
    def reached_count(self) -> int:
        return sum(1 for r in self.representatives_notified if r.reached)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status.value,
            "nearby_hospitals": self.nearby_hospitals,
            "representatives_notified": [
                r.to_dict() for r in self.representatives_notified
            ],
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class EmergencyAccessResult:
    """Returned by EmergencyAccessService.notify_access."""
    user_id: str
    accessor_name: str
    nearby_hospitals: List[Dict[str, Any]]
    representatives_notified: List[RecipientResult]
    accessed_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "accessor_name": self.accessor_name,
            "nearby_hospitals": self.nearby_hospitals,
            "representatives_notified": [
                r.to_dict() for r in self.representatives_notified
            ],
            "accessed_at": self.accessed_at.isoformat(),
        }
