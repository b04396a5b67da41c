"""
radius_utils.py — Great-circle distance and radius pre-filtering.

Provides:
    - Haversine distance between two (lat, lon) points
    - Bounding box that fully contains a radius circle, usable as a
      range condition on indexed latitude/longitude columns
    - Point-in-radius check

All distances are in **kilometers**. Coordinates are in **decimal degrees**.
Wire formats in this service order pairs as ``[longitude, latitude]``
(GeoJSON order); ``Coordinate.from_lon_lat`` converts.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians, and R is Earth's mean
radius (6,371.0088 km). Accurate to ~0.5%, which is well inside the
tolerance of an alert radius.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius

LONGITUDE_RANGE: Tuple[float, float] = (-180.0, 180.0)
LATITUDE_RANGE: Tuple[float, float] = (-90.0, 90.0)


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (LATITUDE_RANGE[0] <= self.latitude <= LATITUDE_RANGE[1]):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (LONGITUDE_RANGE[0] <= self.longitude <= LONGITUDE_RANGE[1]):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @classmethod
    def from_lon_lat(cls, pair: Sequence[float]) -> "Coordinate":
        """Build from a ``[longitude, latitude]`` pair."""
        longitude, latitude = pair
        return cls(latitude=float(latitude), longitude=float(longitude))

    def to_lon_lat(self) -> list:
        return [self.longitude, self.latitude]

    @property
    def lat_rad(self) -> float:
        """Latitude in radians."""
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        """Longitude in radians."""
        return math.radians(self.longitude)


@dataclass(frozen=True)
class BoundingBox:
    """
    Rectangle containing a radius circle.

    ``min_lon``/``max_lon`` are None when the circle crosses the
    antimeridian or reaches a pole; only the latitude band applies then.
    """
    min_lat: float
    max_lat: float
    min_lon: Optional[float]
    max_lon: Optional[float]

    @property
    def constrains_longitude(self) -> bool:
        return self.min_lon is not None and self.max_lon is not None


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points in kilometers.

    Rounded to 4 decimal places (10 cm).

    Examples
    --------
    >>> haversine(Coordinate(0, 0), Coordinate(0.05, 0))
    5.5598

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
# Bounding-box pre-filter
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    """
    Compute a lat/lon box that fully contains the circle (center, radius_km).

    Used as a cheap range pre-filter so Haversine only runs on candidates
    that *might* be inside the radius.
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    angular = radius_km / EARTH_RADIUS_KM  # radians

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    if min_lat <= -90.0 or max_lat >= 90.0:
        # Circle covers a pole: every longitude is reachable
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), None, None)

    # Widest longitude span of the circle (tangent meridians)
    delta_lon = math.degrees(math.asin(math.sin(angular) / math.cos(center.lat_rad)))
    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon

    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, None, None)

    return BoundingBox(min_lat, max_lat, min_lon, max_lon)


def is_inside_radius(
    center: Coordinate,
    point: Coordinate,
    radius_km: float,
) -> Tuple[bool, float]:
    """
    Check whether ``point`` lies within ``radius_km`` of ``center``.

    Returns
    -------
    (inside, distance_km)

    Examples
    --------
    >>> is_inside_radius(Coordinate(0, 0), Coordinate(0.05, 0), 10.0)
    (True, 5.5598)
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    dist = haversine(center, point)
    return (dist <= radius_km, dist)

