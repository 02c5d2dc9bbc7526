"""
Pydantic schemas for the panic / emergency-access API.

Separated from the route handlers so they are reusable across
the codebase (WebSocket handlers, background workers, tests).

Coordinates are unbounded here; range checks live in the service and
report INVALID_LOCATION.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.alerts.models import PanicAlert, RecipientResult


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PanicActivateRequest(BaseModel):
    """Request body for POST /api/v1/panic."""
    user_id: str = Field(..., min_length=1, examples=["usr_8f2c"])
    latitude: float = Field(..., description="Latitude in decimal degrees", examples=[19.4326])
    longitude: float = Field(..., description="Longitude in decimal degrees", examples=[-99.1332])
    accuracy: Optional[float] = Field(
        None, ge=0, description="GPS accuracy in metres", examples=[12.5],
    )
    message: Optional[str] = Field(None, max_length=500, examples=["Me falta el aire"])


class AccessNotificationRequest(BaseModel):
    """Request body for POST /api/v1/panic/access-notification."""
    user_id: str = Field(..., min_length=1)
    accessor_name: str = Field(..., min_length=1, examples=["Dra. Ana López"])
    accessor_role: Optional[str] = Field(None, examples=["paramedic"])
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_name: Optional[str] = Field(None, examples=["Cruz Roja Polanco"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class RecipientResultOut(BaseModel):
    representative_id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    sms_status: str
    whatsapp_status: str
    email_status: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    reached: bool

    @classmethod
    def from_result(cls, result: RecipientResult) -> "RecipientResultOut":
        return cls(**result.to_dict())


class PanicActivationOut(BaseModel):
    """Response for POST /api/v1/panic."""
    alert_id: str
    status: str
    nearby_hospitals: List[Dict[str, Any]]
    representatives_notified: List[RecipientResultOut]
    created_at: datetime


class PanicAlertOut(BaseModel):
    id: str
    user_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    message: Optional[str] = None
    status: str
    nearby_hospitals: List[Dict[str, Any]]
    notifications_sent: Optional[List[Dict[str, Any]]] = None
    created_at: datetime
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: PanicAlert) -> "PanicAlertOut":
        return cls(
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


class PanicAlertListOut(BaseModel):
    count: int
    alerts: List[PanicAlertOut]


class CancelOut(BaseModel):
    cancelled: bool = True
    alert_id: str
    cancelled_at: Optional[datetime] = None


class AccessNotificationOut(BaseModel):
    user_id: str
    accessor_name: str
    nearby_hospitals: List[Dict[str, Any]]
    representatives_notified: List[RecipientResultOut]
    accessed_at: datetime
