"""Great-circle geometry and circular geofence evaluation."""
import math
from datetime import datetime, timezone
from typing import Optional

from schemas import Coordinate, GeofenceResult, Venue

EARTH_RADIUS_M = 6_371_000.0

# Multipliers applied to a venue radius at the two call sites.
STRICT_TOLERANCE = 1.0
MONITOR_TOLERANCE = 3.0


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates, in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """
    Initial bearing from `a` towards `b`, clockwise from true north.
    Returns a value in [0, 360).
    """
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_lambda = math.radians(b.lng - a.lng)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def evaluate(
    venue: Venue,
    sample: Coordinate,
    tolerance_multiplier: float = STRICT_TOLERANCE,
    sampled_at: Optional[datetime] = None,
) -> GeofenceResult:
    """
    Classify a sample as inside/outside the venue geofence.

    The effective radius is `venue.geofence_radius_m * tolerance_multiplier`;
    a point exactly on the boundary counts as inside.
    """
    if tolerance_multiplier <= 0:
        raise ValueError("tolerance_multiplier must be positive")

    distance = distance_meters(venue.coordinate, sample)
    return GeofenceResult(
        within_radius=distance <= venue.geofence_radius_m * tolerance_multiplier,
        distance_m=distance,
        sampled_at=sampled_at or datetime.now(timezone.utc),
        coordinate=sample,
    )
