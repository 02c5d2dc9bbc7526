"""
radius_utils.py — Great-circle distance and coordinate helpers.

Provides:
    - Coordinate validation (finite, in range) for trigger locations
    - Haversine distance calculation between two (lat, lon) points
    - Bounding-box pre-filter used by the facility directory query
    - Display helpers: human-readable distance and a maps link

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude, λ longitude (radians) and R ≈ 6,371 km.

Why Haversine and not a flat-plane approximation?
    - Equirectangular distance on raw lat/lon drifts by several percent
      beyond a few km, enough to reorder hospitals on the 100 km
      escalation radius.
    - Haversine is accurate to ~0.5% on the WGS-84 ellipsoid, well within
      what ranking ambulance destinations needs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius

GOOGLE_MAPS_URL = "https://www.google.com/maps?q={lat},{lng}"


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.latitude) or not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be a finite value in [-90, 90], got {self.latitude}"
            )
        if not math.isfinite(self.longitude) or not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be a finite value in [-180, 180], got {self.longitude}"
            )

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)


def parse_coordinate(latitude: Any, longitude: Any) -> Optional[Coordinate]:
    """
    Build a Coordinate from untrusted input, or return None if malformed.

    Accepts ints, floats and numeric strings. Booleans, NaN, infinities
    and out-of-range values are rejected.

    >>> parse_coordinate(19.4326, -99.1332)
    Coordinate(latitude=19.4326, longitude=-99.1332)
    >>> parse_coordinate(float("nan"), 0) is None
    True
    """
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        return None
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        return None
    try:
        return Coordinate(lat, lng)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Compute the great-circle distance between two points.

    Parameters
    ----------
    point1 : Coordinate
        Origin point (e.g. patient location).
    point2 : Coordinate
        Target point (e.g. hospital location).

    Returns
    -------
    float
        Distance in kilometers, rounded to 4 decimal places.

    Examples
    --------
    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))

    return round(EARTH_RADIUS_KM * c, 4)


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before expensive Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Compute a lat/lon bounding box that fully contains the circle defined
    by (center, radius_km). The directory uses it as a cheap rectangular
    SQL pre-filter so Haversine only runs on candidates that *might* be
    inside the radius.

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.

    Longitudes are normalised to [-180, 180]. A box that crosses the
    antimeridian comes back with ``min_lon > max_lon`` (RFC 7946 style);
    read it through ``longitude_ranges``. A circle that reaches a pole
    covers every longitude, so the box spans (-180, 180).
    """
    angular_deg = math.degrees(radius_km / EARTH_RADIUS_KM)

    min_lat = center.latitude - angular_deg
    max_lat = center.latitude + angular_deg
    if min_lat <= -90.0 or max_lat >= 90.0:
        return (max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    # Longitude delta shrinks toward the poles
    delta_lon = angular_deg / math.cos(center.lat_rad)
    if delta_lon >= 180.0:
        return (min_lat, max_lat, -180.0, 180.0)

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0:
        min_lon += 360.0
    if max_lon > 180.0:
        max_lon -= 360.0

    return (min_lat, max_lat, min_lon, max_lon)


def longitude_ranges(min_lon: float, max_lon: float) -> List[Tuple[float, float]]:
    """Split a possibly wrapped longitude span into plain [lo, hi] ranges."""
    if min_lon <= max_lon:
        return [(min_lon, max_lon)]
    return [(min_lon, 180.0), (-180.0, max_lon)]


def inside_bbox(
    lat: float, lon: float,
    min_lat: float, max_lat: float,
    min_lon: float, max_lon: float,
) -> bool:
    """Quick rectangular check, antimeridian aware."""
    if not min_lat <= lat <= max_lat:
        return False
    return any(lo <= lon <= hi for lo, hi in longitude_ranges(min_lon, max_lon))


def is_inside_radius(
    origin: Coordinate,
    target: Coordinate,
    radius_km: float,
) -> Tuple[bool, float]:
    """
    Check whether ``target`` lies within ``radius_km`` of ``origin``.

    Returns
    -------
    (inside, distance_km) : tuple[bool, float]
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    dist = haversine(origin, target)
    return (dist <= radius_km, dist)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.7 km'
    """
    if km < 1.0:
        return f"{int(km * 1000)} m"
    return f"{km:.1f} km"


def maps_url(latitude: float, longitude: float) -> str:
    """Link that opens the location in Google Maps."""
    return GOOGLE_MAPS_URL.format(lat=latitude, lng=longitude)
