"""
repository.py — Store contracts used by dispatch, plus in-memory versions.

Contracts:
    UserStore          — patient profile + representatives, condition list
    AlertStore         — PanicAlert create / patch / lookup / listing
    NotificationStore  — append-only notification audit rows

The in-memory stores back development and tests; sql_repository.py
provides the SQLAlchemy versions. Both enforce the same snapshot rules:

    nearby_hospitals     cannot be patched
    notifications_sent   can be attached exactly once
    status               ACTIVE → CANCELLED only, checked against the
                         stored row inside the write
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

from backend.app.alerts.models import (
    NotificationRecord,
    PanicAlert,
    PanicStatus,
    PatientProfile,
)
from backend.app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

PATCHABLE_ALERT_FIELDS = frozenset({"status", "cancelled_at", "notifications_sent"})

# The only status change a stored alert accepts
ALLOWED_TRANSITIONS = frozenset({(PanicStatus.ACTIVE, PanicStatus.CANCELLED)})


class AlertStateError(ValueError):
    """A status patch that does not follow ACTIVE → CANCELLED."""

    def __init__(self, current: PanicStatus, requested: PanicStatus):
        super().__init__(f"PanicAlert cannot move from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested



# ═══════════════════════════════════════════════════════════════════════════
# Contracts
# ═══════════════════════════════════════════════════════════════════════════

class UserStore(Protocol):
    async def get_user_with_representatives(self, user_id: str) -> Optional[PatientProfile]:
        ...

    async def get_conditions(self, user_id: str) -> List[str]:
        ...


class AlertStore(Protocol):
    async def create_alert(self, alert: PanicAlert) -> PanicAlert:
        ...

    async def update_alert(self, alert_id: str, patch: Mapping[str, Any]) -> PanicAlert:
        ...

    async def find_alert(
        self, alert_id: str, user_id: str, status: Optional[PanicStatus] = None,
    ) -> Optional[PanicAlert]:
        ...

    async def list_alerts(
        self, user_id: str, status: Optional[PanicStatus] = None, limit: Optional[int] = None,
    ) -> List[PanicAlert]:
        ...


class NotificationStore(Protocol):
    async def create_notification_record(self, record: NotificationRecord) -> NotificationRecord:
        ...


def validate_alert_patch(current: PanicAlert, patch: Mapping[str, Any]) -> None:
    """
    Reject patches that would rewrite a frozen snapshot or break the
    ACTIVE → CANCELLED state machine.

    Raises ValueError naming the offending field, or AlertStateError for
    a disallowed status change. Callers must hold whatever lock makes
    ``current`` the latest version of the row.
    """
    illegal = set(patch) - PATCHABLE_ALERT_FIELDS
    if illegal:
        raise ValueError(f"PanicAlert fields are immutable: {', '.join(sorted(illegal))}")
    if "notifications_sent" in patch and current.notifications_sent is not None:
        raise ValueError("notifications_sent is already attached to this alert")
    if "status" in patch:
        requested = PanicStatus(patch["status"])
        if (current.status, requested) not in ALLOWED_TRANSITIONS:
            raise AlertStateError(current.status, requested)
    elif "cancelled_at" in patch:
        raise ValueError("cancelled_at can only be set together with the CANCELLED status")



# ═══════════════════════════════════════════════════════════════════════════
# In-memory implementations
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class InMemoryUserStore:
    profiles: Dict[str, PatientProfile] = field(default_factory=dict)
    conditions: Dict[str, List[str]] = field(default_factory=dict)

    def add(self, profile: PatientProfile, conditions: Optional[List[str]] = None) -> None:
        self.profiles[profile.user_id] = profile
        self.conditions[profile.user_id] = list(conditions or [])

    async def get_user_with_representatives(self, user_id: str) -> Optional[PatientProfile]:
        profile = self.profiles.get(user_id)
        return copy.deepcopy(profile) if profile else None

    async def get_conditions(self, user_id: str) -> List[str]:
        return list(self.conditions.get(user_id, []))


@dataclass
class InMemoryAlertStore:
    """Keeps alerts in insertion order; hands out copies so callers cannot mutate snapshots."""
    alerts: Dict[str, PanicAlert] = field(default_factory=dict)

    async def create_alert(self, alert: PanicAlert) -> PanicAlert:
        if alert.id in self.alerts:
            raise ValueError(f"PanicAlert {alert.id} already exists")
        self.alerts[alert.id] = copy.deepcopy(alert)
        return copy.deepcopy(alert)

    async def update_alert(self, alert_id: str, patch: Mapping[str, Any]) -> PanicAlert:
        current = self.alerts.get(alert_id)
        if current is None:
            raise NotFoundError("PanicAlert", alert_id=alert_id)
        validate_alert_patch(current, patch)

        for key, value in patch.items():
            if key == "status":
                value = PanicStatus(value)
            setattr(current, key, copy.deepcopy(value))
        return copy.deepcopy(current)

    async def find_alert(
        self, alert_id: str, user_id: str, status: Optional[PanicStatus] = None,
    ) -> Optional[PanicAlert]:
        alert = self.alerts.get(alert_id)
        if alert is None or alert.user_id != user_id:
            return None
        if status is not None and alert.status != status:
            return None
        return copy.deepcopy(alert)

    async def list_alerts(
        self, user_id: str, status: Optional[PanicStatus] = None, limit: Optional[int] = None,
    ) -> List[PanicAlert]:
        matches = [
            a for a in reversed(list(self.alerts.values()))
            if a.user_id == user_id and (status is None or a.status == status)
        ]
        # identical timestamps fall back to newest insertion first
        matches.sort(key=lambda a: a.created_at, reverse=True)
        if limit is not None:
            matches = matches[:limit]
        return [copy.deepcopy(a) for a in matches]


@dataclass
class InMemoryNotificationStore:
    records: List[NotificationRecord] = field(default_factory=list)

    async def create_notification_record(self, record: NotificationRecord) -> NotificationRecord:
        self.records.append(record)
        return record
