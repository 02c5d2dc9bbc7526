"""
Tests for the hospital matcher and relevance scoring.

Covers:
    - Radius filtering and limit truncation
    - Distance ordering without conditions, relevance ordering with them
    - 20 km → 100 km escalation and the empty outcome
    - Directory failures degrading to an empty list
    - Condition → specialty expansion and scoring rules

Run with: pytest tests/test_hospital_matcher.py -v
"""

from __future__ import annotations

import pytest

from backend.app.spatial.hospital_matcher import (
    Facility,
    HospitalCandidate,
    HospitalMatcher,
    InMemoryFacilityDirectory,
)
from backend.app.spatial.radius_utils import Coordinate
from backend.app.spatial.relevance import normalize_tag, relevance_score, specialties_for

from conftest import CDMX_LAT, CDMX_LON

ZOCALO = Coordinate(CDMX_LAT, CDMX_LON)

INER = "DFSSA003932"
HGM = "DFSSA000015"
IMSS = "DFIMS000231"
CARDIO = "DFSSA004002"


def _make_facility(fid: str, lat: float, lng: float, *specialties: str, **flags) -> Facility:
    return Facility(
        id=fid, name=f"Hospital {fid}",
        latitude=lat, longitude=lng,
        specialties=tuple(specialties),
        phone="55 0000 0000",
        **flags,
    )


class _ExplodingDirectory:
    async def query_near(self, latitude, longitude, radius_km):
        raise ConnectionError("directory offline")


class _OverReturningDirectory:
    """Ignores the radius and hands back everything."""

    def __init__(self, facilities):
        self.facilities = facilities
        self.calls = []

    async def query_near(self, latitude, longitude, radius_km):
        self.calls.append(radius_km)
        return list(self.facilities)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: find_candidates
# ═══════════════════════════════════════════════════════════════════════════

class TestFindCandidates:
    """Radius, limit and ordering rules."""

    @pytest.mark.asyncio
    async def test_distance_order_without_conditions(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 20, 5)
        assert [c.facility.id for c in candidates] == [HGM, IMSS, INER, CARDIO]
        assert all(c.relevance_score is None for c in candidates)

    @pytest.mark.asyncio
    async def test_every_candidate_within_radius(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 20, 10)
        assert candidates
        assert all(c.distance_km <= 20 for c in candidates)
        # Cuernavaca is ~58 km away
        assert not any(c.facility.id.startswith("MS") for c in candidates)

    @pytest.mark.asyncio
    async def test_distances_are_sorted(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 100, 10)
        distances = [c.distance_km for c in candidates]
        assert distances == sorted(distances)

    @pytest.mark.asyncio
    async def test_limit_truncates(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 20, 2)
        assert [c.facility.id for c in candidates] == [HGM, IMSS]

    @pytest.mark.asyncio
    async def test_asthma_puts_respiratory_institute_first(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 20, 5, ["Asma"])
        assert [c.facility.id for c in candidates] == [INER, HGM, IMSS, CARDIO]
        assert candidates[0].relevance_score > candidates[1].relevance_score
        assert candidates[0].distance_km > candidates[1].distance_km

    @pytest.mark.asyncio
    async def test_equal_scores_fall_back_to_distance(self, matcher):
        candidates = await matcher.find_candidates(ZOCALO, 20, 5, ["Asma"])
        zero = [c for c in candidates if c.relevance_score == 0]
        assert [c.facility.id for c in zero] == [IMSS, CARDIO]

    @pytest.mark.asyncio
    async def test_zero_radius_or_limit_returns_empty(self, matcher):
        assert await matcher.find_candidates(ZOCALO, 0, 5) == []
        assert await matcher.find_candidates(ZOCALO, 20, 0) == []
        assert await matcher.find_candidates(ZOCALO, -1, 5) == []

    @pytest.mark.asyncio
    async def test_over_returning_directory_is_filtered(self):
        near = _make_facility("NEAR", 19.44, -99.13)
        far = _make_facility("FAR", 25.0, -100.0)
        matcher = HospitalMatcher(_OverReturningDirectory([far, near]))
        candidates = await matcher.find_candidates(ZOCALO, 20, 5)
        assert [c.facility.id for c in candidates] == ["NEAR"]

    @pytest.mark.asyncio
    async def test_identical_positions_ordered_by_id(self):
        a = _make_facility("B-2", 19.44, -99.13)
        b = _make_facility("A-1", 19.44, -99.13)
        matcher = HospitalMatcher(InMemoryFacilityDirectory([a, b]))
        candidates = await matcher.find_candidates(ZOCALO, 20, 5)
        assert [c.facility.id for c in candidates] == ["A-1", "B-2"]

    @pytest.mark.asyncio
    async def test_repeated_queries_are_deterministic(self, matcher):
        first = await matcher.find_candidates(ZOCALO, 20, 5, ["diabetes"])
        second = await matcher.find_candidates(ZOCALO, 20, 5, ["diabetes"])
        assert first == second


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: find_nearby escalation
# ═══════════════════════════════════════════════════════════════════════════

class TestFindNearby:
    """Default search, widened search, and graceful failure."""

    @pytest.mark.asyncio
    async def test_default_search_when_hospitals_nearby(self, matcher):
        candidates = await matcher.find_nearby(ZOCALO)
        assert len(candidates) == 4

    @pytest.mark.asyncio
    async def test_escalates_to_extended_radius(self):
        # ~44.5 km due north of the origin
        remote = _make_facility("REMOTE", 19.4, -99.0)
        directory = _OverReturningDirectory([remote])
        matcher = HospitalMatcher(directory)

        candidates = await matcher.find_nearby(Coordinate(19.0, -99.0))

        assert [c.facility.id for c in candidates] == ["REMOTE"]
        assert 40 < candidates[0].distance_km < 50
        assert directory.calls == [20.0, 100.0]

    @pytest.mark.asyncio
    async def test_extended_search_uses_extended_limit(self):
        facilities = [
            _make_facility(f"F{i}", 19.3 + i * 0.01, -99.0) for i in range(5)
        ]
        matcher = HospitalMatcher(InMemoryFacilityDirectory(facilities))
        candidates = await matcher.find_nearby(Coordinate(19.0, -99.0))
        assert len(candidates) == 3
        assert all(c.distance_km <= 100 for c in candidates)

    @pytest.mark.asyncio
    async def test_no_hospital_anywhere(self, matcher):
        # middle of the Pacific
        assert await matcher.find_nearby(Coordinate(0.0, -140.0)) == []

    @pytest.mark.asyncio
    async def test_finds_hospital_across_the_antimeridian(self):
        suva_side = _make_facility("FJ1", -16.8, -179.95, "Urgencias")
        matcher = HospitalMatcher(InMemoryFacilityDirectory([suva_side]))

        found = await matcher.find_nearby(Coordinate(-16.8, 179.95))

        assert [c.facility.id for c in found] == ["FJ1"]
        assert found[0].distance_km == pytest.approx(10.6, abs=0.3)

    @pytest.mark.asyncio
    async def test_finds_hospital_on_the_far_side_of_the_pole(self):
        station = _make_facility("ARC1", 89.9, 180.0)
        matcher = HospitalMatcher(InMemoryFacilityDirectory([station]))

        found = await matcher.find_nearby(Coordinate(89.8, 0.0))

        assert [c.facility.id for c in found] == ["ARC1"]

    @pytest.mark.asyncio
    async def test_directory_failure_yields_empty(self):
        matcher = HospitalMatcher(_ExplodingDirectory())
        assert await matcher.find_nearby(ZOCALO, ["asma"]) == []

    @pytest.mark.asyncio
    async def test_custom_bounds(self, directory):
        matcher = HospitalMatcher(directory, radius_km=5, limit=1)
        candidates = await matcher.find_nearby(ZOCALO)
        assert [c.facility.id for c in candidates] == [HGM]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: snapshots
# ═══════════════════════════════════════════════════════════════════════════

class TestCandidateSnapshot:

    def test_snapshot_fields(self):
        facility = _make_facility("X1", 19.4, -99.1, "Urgencias")
        snapshot = HospitalCandidate(facility, 3.14159, 12.0).to_snapshot()
        assert snapshot["id"] == "X1"
        assert snapshot["distance_km"] == 3.14
        assert snapshot["specialties"] == ["Urgencias"]
        assert snapshot["relevance_score"] == 12.0

    def test_snapshot_without_score(self):
        facility = _make_facility("X1", 19.4, -99.1)
        snapshot = HospitalCandidate(facility, 1.0).to_snapshot()
        assert "relevance_score" not in snapshot

    def test_contact_phone_prefers_emergency_line(self):
        facility = Facility(
            id="X", name="X", latitude=0, longitude=0,
            phone="111", emergency_phone="911",
        )
        assert facility.contact_phone == "911"
        assert Facility(id="Y", name="Y", latitude=0, longitude=0, phone="111").contact_phone == "111"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: relevance scoring
# ═══════════════════════════════════════════════════════════════════════════

class TestRelevance:

    def test_normalize_strips_accents_and_case(self):
        assert normalize_tag("  Neumología ") == "neumologia"
        assert normalize_tag("Cirugía   General") == "cirugia general"

    def test_known_condition_expands(self):
        assert specialties_for(["Asma"]) == {"neumologia", "alergologia", "medicina interna"}

    def test_unknown_condition_matches_literally(self):
        assert specialties_for(["Dermatología"]) == {"dermatologia"}
        assert relevance_score(["Dermatologia"], ["Dermatología"]) == 15.0

    def test_no_overlap_scores_zero(self):
        assert relevance_score(["asma"], ["Oncologia", "Urgencias"]) == 0.0

    def test_more_overlap_scores_higher(self):
        one = relevance_score(["asma"], ["Neumologia"])
        two = relevance_score(["asma"], ["Neumologia", "Alergologia"])
        assert two > one > 0

    def test_capability_bonus_only_for_critical_conditions(self):
        flags = dict(has_emergency=True, has_icu=True, has_trauma=True)
        assert relevance_score(["asma"], ["Neumologia"], **flags) == 10.0
        assert relevance_score(["infarto"], ["Cardiologia"], **flags) == 13.0

    def test_overlap_outweighs_all_capabilities(self):
        flags = dict(has_emergency=True, has_icu=True, has_trauma=True)
        richer = relevance_score(["infarto"], ["Cardiologia", "Urgencias"])
        bonused = relevance_score(["infarto"], ["Cardiologia"], **flags)
        assert richer > bonused

    def test_empty_conditions(self):
        assert relevance_score([], ["Urgencias"]) == 0.0
        assert relevance_score(["  "], ["Urgencias"]) == 0.0
