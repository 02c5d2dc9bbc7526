"""
hospital_matcher.py: Ranked, distance-bounded hospital search.

Given the patient's position (and optionally their known conditions) the
matcher returns the facilities an emergency contact should be pointed at.

═══════════════════════════════════════════════════════════════════════════
SEARCH FLOW
═══════════════════════════════════════════════════════════════════════════

    directory.query_near(lat, lng, radius)      coarse, may over-return
              │
              ▼
    haversine → keep distance ≤ radius           exact filter
              │
              ▼
    conditions?  ──yes──▶ score, sort (score ↓, distance ↑, id ↑)
         │no
         ▼
    sort (distance ↑, id ↑)  →  truncate to limit

Escalation policy (find_nearby):

    20 km / limit 5   ──empty──▶   100 km / limit 3   ──empty──▶   []

Rural and low-density areas must not be told "no hospital" when one
exists further out. An empty list is a valid outcome, never an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from backend.app.spatial.radius_utils import (
    Coordinate,
    bounding_box,
    inside_bbox,
    is_inside_radius,
)
from backend.app.spatial.relevance import relevance_score

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_KM = 20.0
DEFAULT_LIMIT = 5
EXTENDED_RADIUS_KM = 100.0
EXTENDED_LIMIT = 3


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Facility:
    """A hospital as read from the external directory."""
    id: str
    name: str
    latitude: float
    longitude: float
    specialties: Tuple[str, ...] = ()
    phone: Optional[str] = None
    emergency_phone: Optional[str] = None
    address: Optional[str] = None
    has_emergency: bool = False
    has_icu: bool = False
    has_trauma: bool = False

    @property
    def location(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    @property
    def contact_phone(self) -> Optional[str]:
        """Emergency line when the directory has one, main line otherwise."""
        return self.emergency_phone or self.phone


@dataclass(frozen=True)
class HospitalCandidate:
    """A facility annotated with query-time distance and relevance."""
    facility: Facility
    distance_km: float
    relevance_score: Optional[float] = None

    @property
    def name(self) -> str:
        return self.facility.name

    def to_snapshot(self) -> Dict[str, Any]:
        """Plain-dict form frozen into the PanicAlert at dispatch time."""
        f = self.facility
        snapshot: Dict[str, Any] = {
            "id": f.id,
            "name": f.name,
            "latitude": f.latitude,
            "longitude": f.longitude,
            "address": f.address,
            "phone": f.phone,
            "emergency_phone": f.emergency_phone,
            "specialties": list(f.specialties),
            "distance_km": round(self.distance_km, 2),
        }
        if self.relevance_score is not None:
            snapshot["relevance_score"] = self.relevance_score
        return snapshot


# ═══════════════════════════════════════════════════════════════════════════
# Directory Contract
# ═══════════════════════════════════════════════════════════════════════════

class FacilityDirectory(Protocol):
    """Read-only facility source. May over-return; the matcher filters."""

    async def query_near(
        self, latitude: float, longitude: float, radius_km: float,
    ) -> List[Facility]:
        ...


@dataclass
class InMemoryFacilityDirectory:
    """Directory backed by a list: seeds, tests, offline deployments."""
    facilities: List[Facility] = field(default_factory=list)

    async def query_near(
        self, latitude: float, longitude: float, radius_km: float,
    ) -> List[Facility]:
        bbox = bounding_box(Coordinate(latitude, longitude), radius_km)
        return [
            f for f in self.facilities
            if inside_bbox(f.latitude, f.longitude, *bbox)
        ]


# ═══════════════════════════════════════════════════════════════════════════
# Matcher
# ═══════════════════════════════════════════════════════════════════════════

class HospitalMatcher:
    """
    Ranks directory facilities around a point.

    Usage:
        matcher = HospitalMatcher(directory)
        candidates = await matcher.find_nearby(Coordinate(19.43, -99.13), ["asma"])
    """

    def __init__(
        self,
        directory: FacilityDirectory,
        *,
        radius_km: float = DEFAULT_RADIUS_KM,
        limit: int = DEFAULT_LIMIT,
        extended_radius_km: float = EXTENDED_RADIUS_KM,
        extended_limit: int = EXTENDED_LIMIT,
    ):
        self.directory = directory
        self.radius_km = radius_km
        self.limit = limit
        self.extended_radius_km = extended_radius_km
        self.extended_limit = extended_limit

    async def find_candidates(
        self,
        origin: Coordinate,
        radius_km: float,
        limit: int,
        conditions: Optional[Sequence[str]] = None,
    ) -> List[HospitalCandidate]:
        """
        Return up to ``limit`` facilities within ``radius_km`` of ``origin``.

        Parameters
        ----------
        origin : Coordinate
        radius_km : float
            Hard distance bound (inclusive).
        limit : int
            Maximum number of candidates.
        conditions : sequence of str | None
            Patient conditions. When non-empty, candidates carry a
            relevance score and are ordered by it before distance.

        Returns
        -------
        list of HospitalCandidate
            Deterministic order for identical inputs.
        """
        if radius_km <= 0 or limit <= 0:
            return []

        facilities = await self.directory.query_near(
            origin.latitude, origin.longitude, radius_km,
        )

        use_relevance = bool(conditions)
        candidates: List[HospitalCandidate] = []

        for facility in facilities:
            inside, distance = is_inside_radius(origin, facility.location, radius_km)
            if not inside:
                continue
            score = None
            if use_relevance:
                score = relevance_score(
                    conditions,
                    facility.specialties,
                    has_emergency=facility.has_emergency,
                    has_icu=facility.has_icu,
                    has_trauma=facility.has_trauma,
                )
            candidates.append(HospitalCandidate(facility, distance, score))

        if use_relevance:
            candidates.sort(
                key=lambda c: (-(c.relevance_score or 0.0), c.distance_km, c.facility.id)
            )
        else:
            candidates.sort(key=lambda c: (c.distance_km, c.facility.id))

        return candidates[:limit]

    async def find_nearby(
        self,
        origin: Coordinate,
        conditions: Optional[Sequence[str]] = None,
    ) -> List[HospitalCandidate]:
        """
        Search the default radius, escalating to the extended one if empty.

        Never raises: a directory failure is logged and yields ``[]`` so
        the caller's emergency flow carries on without hospital context.
        """
        try:
            candidates = await self.find_candidates(
                origin, self.radius_km, self.limit, conditions,
            )
            if candidates:
                return candidates

            logger.info(
                "No hospitals within %.0f km of (%.4f, %.4f), widening to %.0f km",
                self.radius_km, origin.latitude, origin.longitude,
                self.extended_radius_km,
            )
            return await self.find_candidates(
                origin, self.extended_radius_km, self.extended_limit, conditions,
            )
        except Exception:
            logger.exception(
                "Hospital search failed near (%.4f, %.4f)",
                origin.latitude, origin.longitude,
            )
            return []
