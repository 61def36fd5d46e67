"""Single-route ordering: assistant first, then the routing provider, then a greedy fallback."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Depot, Leg, TimeSuggestion, Waypoint
from ..assistant.planner import RouteAssistant
from ..geospatial import estimate_leg, haversine_km, parse_time, travel_minutes
from .providers import RoutingProvider

logger = logging.getLogger(__name__)

NO_APPOINTMENT_MINUTES = 23 * 60 + 59


@dataclass(slots=True)
class OrderingResult:
    order: List[int]
    legs: List[Leg]
    reasoning: str
    source: Literal["assistant", "provider", "fallback"]
    suggestions: List[TimeSuggestion] = field(default_factory=list)


def estimate_legs(depot: Depot, ordered: Sequence[Waypoint]) -> List[Leg]:
    """Straight-line legs scaled by the road factor, at the average city speed."""
    legs: list[Leg] = []
    lat, lon = depot.latitude, depot.longitude
    for waypoint in ordered:
        meters, minutes = estimate_leg(
            lat,
            lon,
            waypoint.latitude,
            waypoint.longitude,
            road_factor=settings.road_distance_factor,
            speed_kmh=settings.average_speed_kmh,
        )
        legs.append(Leg(distance_meters=meters, duration_minutes=minutes))
        lat, lon = waypoint.latitude, waypoint.longitude
    return legs


def _appointment_minutes(waypoint: Waypoint) -> Optional[int]:
    return parse_time(waypoint.appointment_start) if waypoint.appointment_start else None


def _sort_appointment(waypoint: Waypoint) -> int:
    appointment = _appointment_minutes(waypoint)
    return NO_APPOINTMENT_MINUTES if appointment is None else appointment


def greedy_order(waypoints: Sequence[Waypoint], depot: Depot, start_time: str) -> List[int]:
    """Nearest-neighbour order that avoids arriving too late for appointments.

    At each step the nearest waypoint reachable no more than the late tolerance after its
    appointment start wins (first one on ties). When nothing is reachable the earliest
    appointment goes next, so the loop always terminates. No randomness is involved.
    """
    tolerance = settings.late_tolerance_minutes
    speed = settings.average_speed_kmh
    remaining = list(range(len(waypoints)))
    order: list[int] = []
    lat, lon = depot.latitude, depot.longitude
    current = parse_time(start_time)

    while remaining:
        best: Optional[int] = None
        best_distance = math.inf
        for index in remaining:
            waypoint = waypoints[index]
            distance = haversine_km(lat, lon, waypoint.latitude, waypoint.longitude)
            arrival = current + travel_minutes(lat, lon, waypoint.latitude, waypoint.longitude, speed)
            appointment = _appointment_minutes(waypoint)
            if appointment is not None and arrival > appointment + tolerance:
                continue
            if distance < best_distance:
                best = index
                best_distance = distance

        if best is None:
            best = min(remaining, key=lambda i: _sort_appointment(waypoints[i]))

        chosen = waypoints[best]
        order.append(best)
        remaining.remove(best)

        current += travel_minutes(lat, lon, chosen.latitude, chosen.longitude, speed)
        appointment = _appointment_minutes(chosen)
        if appointment is not None and current < appointment:
            current = appointment
        current += chosen.work_duration_minutes
        lat, lon = chosen.latitude, chosen.longitude

    return order


class RouteOptimizer:
    def __init__(
        self,
        provider: RoutingProvider | None = None,
        assistant: RouteAssistant | None = None,
    ) -> None:
        self.provider = provider
        self.assistant = assistant

    def legs_for(self, depot: Depot, ordered: Sequence[Waypoint]) -> List[Leg]:
        """Provider legs for a fixed order, estimated legs when the provider is missing or fails."""
        if self.provider is not None and ordered:
            try:
                return self.provider.legs_for_fixed_order(
                    (depot.latitude, depot.longitude),
                    [(w.latitude, w.longitude) for w in ordered],
                )
            except ProviderError as exc:
                logger.warning(f"{self.provider.name} legs unavailable, estimating: {exc}")
        return estimate_legs(depot, ordered)

    def optimize(self, waypoints: Sequence[Waypoint], depot: Depot, start_time: str) -> OrderingResult:
        """Order one route's waypoints. Always returns a complete permutation."""
        if not waypoints:
            return OrderingResult(order=[], legs=[], reasoning="", source="fallback")

        if self.assistant is not None:
            try:
                planned = self.assistant.plan_order(waypoints, depot, start_time)
                ordered = [waypoints[i] for i in planned.order]
                return OrderingResult(
                    order=planned.order,
                    legs=self.legs_for(depot, ordered),
                    reasoning=planned.reasoning,
                    source="assistant",
                    suggestions=planned.suggestions,
                )
            except ProviderError as exc:
                logger.warning(f"Route assistant unavailable, trying routing provider: {exc}")

        if self.provider is not None:
            try:
                result = self.provider.optimize_order(
                    (depot.latitude, depot.longitude),
                    [(w.latitude, w.longitude) for w in waypoints],
                )
                return OrderingResult(
                    order=result.order,
                    legs=result.legs,
                    reasoning=f"Ordered by {self.provider.name} (assistant unavailable)",
                    source="provider",
                )
            except ProviderError as exc:
                logger.warning(f"{self.provider.name} ordering failed, using greedy fallback: {exc}")

        order = greedy_order(waypoints, depot, start_time)
        logger.info(f"Greedy fallback ordered {len(order)} waypoints")
        return OrderingResult(
            order=order,
            legs=self.legs_for(depot, [waypoints[i] for i in order]),
            reasoning="Greedy nearest-neighbour ordering (assistant and routing provider unavailable)",
            source="fallback",
        )
