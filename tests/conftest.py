"""
Shared fixtures for the dispatch test-suite.

Providers are in-process fakes; stores, directory and broadcaster are the
in-memory implementations. The default patient lives in Mexico City, has
asthma and three representatives with different contact data.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from backend.app.alerts.access_service import EmergencyAccessService
from backend.app.alerts.broadcaster import InMemoryBroadcaster
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    NotificationParams,
    PatientProfile,
    Representative,
    SendResult,
)
from backend.app.alerts.panic_service import PanicAlertService
from backend.app.alerts.repository import (
    InMemoryAlertStore,
    InMemoryNotificationStore,
    InMemoryUserStore,
)
from backend.app.spatial.hospital_matcher import HospitalMatcher, InMemoryFacilityDirectory
from backend.app.spatial.seed_facilities import SEED_FACILITIES

# Zócalo, Mexico City
CDMX_LAT = 19.4326
CDMX_LON = -99.1332

USER_ID = "user-1"


class FakeProvider:
    """
    Scriptable channel provider.

    outcome: "ok" | "fail" | "raise"
    delay:   seconds to sleep before answering (use to simulate a hang)
    """

    def __init__(
        self,
        name: str = "fake",
        *,
        available: bool = True,
        outcome: str = "ok",
        delay: float = 0.0,
    ):
        self.name = name
        self.available = available
        self.outcome = outcome
        self.delay = delay
        self.calls: List[NotificationParams] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def get_name(self) -> str:
        return self.name

    def is_available(self) -> bool:
        return self.available

    async def send(self, params: NotificationParams) -> SendResult:
        self.calls.append(params)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.outcome == "raise":
                raise RuntimeError(f"{self.name} exploded")
            if self.outcome == "fail":
                return SendResult.failed(self.name, f"{self.name} rejected")
            return SendResult(
                success=True, provider=self.name,
                message_id=f"{self.name}-{len(self.calls)}",
            )
        finally:
            self.in_flight -= 1


def make_representative(
    rid: str,
    name: str,
    *,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    priority: int = 1,
    emergency: bool = True,
    access: bool = True,
) -> Representative:
    return Representative(
        id=rid,
        user_id=USER_ID,
        name=name,
        phone=phone,
        email=email,
        relationship="familiar",
        priority=priority,
        notify_on_emergency=emergency,
        notify_on_access=access,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_provider():
    """The FakeProvider class, for tests that need extra instances."""
    return FakeProvider


@pytest.fixture
def make_rep():
    return make_representative


@pytest.fixture
def representatives() -> List[Representative]:
    return [
        make_representative(
            "rep-1", "Carlos Amador",
            phone="55 1234 5678", email="carlos@example.com", priority=1,
        ),
        make_representative(
            "rep-2", "Lucía Pérez",
            phone="+52 777 123 4567", priority=2, access=False,
        ),
        make_representative(
            "rep-3", "Jorge Ruiz",
            email="jorge@example.com", priority=3, emergency=False,
        ),
    ]


@pytest.fixture
def users(representatives) -> InMemoryUserStore:
    store = InMemoryUserStore()
    store.add(
        PatientProfile(
            user_id=USER_ID,
            name="Ana García",
            preferred_locale="es",
            representatives=representatives,
        ),
        conditions=["Asma"],
    )
    return store


@pytest.fixture
def directory() -> InMemoryFacilityDirectory:
    return InMemoryFacilityDirectory(list(SEED_FACILITIES))


@pytest.fixture
def matcher(directory) -> HospitalMatcher:
    return HospitalMatcher(directory)


@pytest.fixture
def alerts() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def notifications() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()


@pytest.fixture
def broadcaster() -> InMemoryBroadcaster:
    return InMemoryBroadcaster()


@pytest.fixture
def sms() -> FakeProvider:
    return FakeProvider("fake-sms")


@pytest.fixture
def whatsapp() -> FakeProvider:
    return FakeProvider("fake-whatsapp")


@pytest.fixture
def email() -> FakeProvider:
    return FakeProvider("fake-email")


@pytest.fixture
def dispatcher(sms, whatsapp, email, notifications) -> NotificationDispatcher:
    return NotificationDispatcher(
        sms, whatsapp, email, notifications,
        channel_timeout_seconds=1.0,
        max_concurrency=5,
    )


@pytest.fixture
def panic_service(users, alerts, matcher, dispatcher, broadcaster) -> PanicAlertService:
    return PanicAlertService(users, alerts, matcher, dispatcher, broadcaster)


@pytest.fixture
def access_service(users, matcher, dispatcher, broadcaster) -> EmergencyAccessService:
    return EmergencyAccessService(users, matcher, dispatcher, broadcaster)
