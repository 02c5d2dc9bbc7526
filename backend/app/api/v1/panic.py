"""
FastAPI route: Panic alerts and emergency-access notifications.

Provides endpoints to:
    POST /api/v1/panic                          activate a panic alert
    POST /api/v1/panic/{id}/cancel              cancel an active alert
    GET  /api/v1/panic/active                   the user's active alerts
    GET  /api/v1/panic/history                  the user's recent alerts
    GET  /api/v1/panic/{id}                     one alert
    POST /api/v1/panic/access-notification      QR emergency-access notice

Authentication is handled upstream; callers pass ``user_id`` explicitly.
Services are built once at startup and read from ``app.state``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from backend.app.alerts.access_service import EmergencyAccessService
from backend.app.alerts.panic_service import (
    HISTORY_DEFAULT_LIMIT,
    HISTORY_MAX_LIMIT,
    PanicAlertService,
)
from backend.app.api.schemas import (
    AccessNotificationOut,
    AccessNotificationRequest,
    CancelOut,
    PanicActivateRequest,
    PanicActivationOut,
    PanicAlertListOut,
    PanicAlertOut,
    RecipientResultOut,
)
from backend.app.core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/panic", tags=["panic"])


def get_panic_service(request: Request) -> PanicAlertService:
    return request.app.state.panic_service


def get_access_service(request: Request) -> EmergencyAccessService:
    return request.app.state.access_service


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=PanicActivationOut, status_code=201)
async def activate_panic(
    body: PanicActivateRequest,
    service: PanicAlertService = Depends(get_panic_service),
):
    """
    Activate a panic alert.

    Finds nearby hospitals, notifies every emergency representative over
    SMS, WhatsApp and email, and returns the per-recipient outcome. A
    recipient nobody could reach is reported, not raised.
    """
    activation = await service.activate(
        body.user_id,
        body.latitude,
        body.longitude,
        accuracy=body.accuracy,
        message=body.message,
    )
    return PanicActivationOut(
        alert_id=activation.alert_id,
        status=activation.status.value,
        nearby_hospitals=activation.nearby_hospitals,
        representatives_notified=[
            RecipientResultOut.from_result(r) for r in activation.representatives_notified
        ],
        created_at=activation.created_at,
    )


@router.post("/access-notification", response_model=AccessNotificationOut)
async def notify_emergency_access(
    body: AccessNotificationRequest,
    service: EmergencyAccessService = Depends(get_access_service),
):
    """Notify representatives that the patient's emergency data was opened."""
    result = await service.notify_access(
        body.user_id,
        body.accessor_name,
        latitude=body.latitude,
        longitude=body.longitude,
        location_name=body.location_name,
        accessor_role=body.accessor_role,
    )
    return AccessNotificationOut(
        user_id=result.user_id,
        accessor_name=result.accessor_name,
        nearby_hospitals=result.nearby_hospitals,
        representatives_notified=[
            RecipientResultOut.from_result(r) for r in result.representatives_notified
        ],
        accessed_at=result.accessed_at,
    )


@router.post("/{alert_id}/cancel", response_model=CancelOut)
async def cancel_panic(
    alert_id: str,
    user_id: str = Query(..., min_length=1),
    service: PanicAlertService = Depends(get_panic_service),
):
    alert = await service.cancel(alert_id, user_id)
    return CancelOut(alert_id=alert.id, cancelled_at=alert.cancelled_at)


@router.get("/active", response_model=PanicAlertListOut)
async def list_active_alerts(
    user_id: str = Query(..., min_length=1),
    service: PanicAlertService = Depends(get_panic_service),
):
    alerts = await service.list_active(user_id)
    return PanicAlertListOut(
        count=len(alerts),
        alerts=[PanicAlertOut.from_alert(a) for a in alerts],
    )


@router.get("/history", response_model=PanicAlertListOut)
async def list_alert_history(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(HISTORY_DEFAULT_LIMIT, description=f"Clamped to 1..{HISTORY_MAX_LIMIT}"),
    service: PanicAlertService = Depends(get_panic_service),
):
    alerts = await service.list_history(user_id, limit=limit)
    return PanicAlertListOut(
        count=len(alerts),
        alerts=[PanicAlertOut.from_alert(a) for a in alerts],
    )


@router.get("/{alert_id}", response_model=PanicAlertOut)
async def get_alert(
    alert_id: str,
    user_id: str = Query(..., min_length=1),
    service: PanicAlertService = Depends(get_panic_service),
):
    alert = await service.get_by_id(alert_id, user_id)
    if alert is None:
        raise NotFoundError("PanicAlert", alert_id=alert_id)
    return PanicAlertOut.from_alert(alert)
