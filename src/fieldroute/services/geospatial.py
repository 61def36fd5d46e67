"""Geospatial and clock-time helper functions."""

from __future__ import annotations

import math
import re
from typing import Sequence, Tuple

from ..errors import ValidationError

EARTH_RADIUS_KM = 6371.0
ROAD_DISTANCE_FACTOR = 1.3
AVERAGE_SPEED_KMH = 30.0

_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def centroid(points: Sequence[Tuple[float, float]]) -> Tuple[float, float]:
    """Mean latitude/longitude of (lat, lon) pairs; (0, 0) for an empty sequence."""
    if not points:
        return (0.0, 0.0)
    lat = sum(p[0] for p in points) / len(points)
    lon = sum(p[1] for p in points) / len(points)
    return (lat, lon)


def estimate_leg(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    *,
    road_factor: float = ROAD_DISTANCE_FACTOR,
    speed_kmh: float = AVERAGE_SPEED_KMH,
) -> Tuple[int, int]:
    """Estimate road distance (meters) and travel time (minutes) from straight-line distance."""
    road_km = haversine_km(lat1, lon1, lat2, lon2) * road_factor
    return round(road_km * 1000), round(road_km / speed_kmh * 60)


def travel_minutes(lat1: float, lon1: float, lat2: float, lon2: float, speed_kmh: float = AVERAGE_SPEED_KMH) -> int:
    """Straight-line travel time in whole minutes, as used by the ordering heuristics."""
    return round(haversine_km(lat1, lon1, lat2, lon2) / speed_kmh * 60)


def parse_time(value: str, *, allow_overflow: bool = False) -> int:
    """Parse 'HH:MM' (or 'HH:MM:SS') into minutes since midnight.

    Computed schedule times may run past midnight ('25:00'); pass
    ``allow_overflow`` to accept those. Raises ValidationError for anything else.
    """
    match = _CLOCK_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if (hours > 23 and not allow_overflow) or minutes > 59:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def format_time(minutes: int) -> str:
    """Format minutes since midnight as 'HH:MM'. Hours past 23 are not wrapped."""
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(value: str) -> str:
    """'9:05:00' -> '09:05'."""
    return format_time(parse_time(value))


def add_minutes(time_value: str, minutes: int) -> str:
    return format_time(parse_time(time_value, allow_overflow=True) + minutes)


def compare_times(first: str, second: str) -> int:
    """Negative if first is earlier, zero if equal, positive if later."""
    return parse_time(first, allow_overflow=True) - parse_time(second, allow_overflow=True)


def minutes_between(start: str, end: str) -> int:
    """Minutes from start to end, never negative."""
    return max(0, parse_time(end, allow_overflow=True) - parse_time(start, allow_overflow=True))


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))
