"""Google Routes API (computeRoutes) provider."""

from __future__ import annotations

import logging
import re
from typing import List, Sequence

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Leg
from .providers import LatLon, ProviderOrdering, RoutingProvider

logger = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)s$")

ORDER_FIELD_MASK = ",".join(
    [
        "routes.optimizedIntermediateWaypointIndex",
        "routes.legs.distanceMeters",
        "routes.legs.duration",
    ]
)
LEGS_FIELD_MASK = "routes.legs.distanceMeters,routes.legs.duration"


def parse_duration_minutes(duration: str | None) -> int:
    """'1234s' -> 21. Unparseable values count as zero."""
    if not duration:
        return 0
    match = _DURATION_PATTERN.match(duration)
    if not match:
        return 0
    return round(float(match.group(1)) / 60)


def _location(point: LatLon) -> dict:
    return {"location": {"latLng": {"latitude": point[0], "longitude": point[1]}}}


class GoogleRoutesProvider(RoutingProvider):
    """The last waypoint of each request is the fixed destination; the rest are reordered."""

    name = "Google Routes"

    def __init__(self, api_key: str | None = None, url: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key or settings.google_api_key
        if not self.api_key:
            raise ValueError("Google Routes API key is not configured.")
        self.url = url or settings.google_routes_url

    def _compute_routes(self, origin: LatLon, points: Sequence[LatLon], *, optimize: bool) -> dict:
        body: dict = {
            "origin": _location(origin),
            "destination": _location(points[-1]),
            "travelMode": "DRIVE",
            "routingPreference": "TRAFFIC_AWARE",
            "computeAlternativeRoutes": False,
            "languageCode": settings.google_language_code,
        }
        intermediates = points[:-1]
        if intermediates:
            body["intermediates"] = [_location(point) for point in intermediates]
            body["optimizeWaypointOrder"] = optimize
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": ORDER_FIELD_MASK if optimize else LEGS_FIELD_MASK,
        }
        data = self._send(lambda client: client.post(self.url, json=body, headers=headers))
        if data.get("error"):
            error = data["error"]
            raise ProviderError(f"Google Routes error {error.get('status')}: {error.get('message')}")
        if not data.get("routes"):
            raise ProviderError("Google Routes returned no route")
        return data["routes"][0]

    @staticmethod
    def _legs(route: dict) -> List[Leg]:
        return [
            Leg(
                distance_meters=int(leg.get("distanceMeters") or 0),
                duration_minutes=parse_duration_minutes(leg.get("duration")),
            )
            for leg in route.get("legs") or []
        ]

    def _optimize_chunk(self, origin: LatLon, points: Sequence[LatLon]) -> ProviderOrdering:
        route = self._compute_routes(origin, points, optimize=True)
        intermediate_count = len(points) - 1
        optimized = route.get("optimizedIntermediateWaypointIndex") or list(range(intermediate_count))
        # unreachable intermediates come back as -1
        if any(not 0 <= index < intermediate_count for index in optimized):
            raise ProviderError("Google Routes could not place every waypoint")
        return ProviderOrdering(order=[*optimized, intermediate_count], legs=self._legs(route))

    def legs_for_fixed_order(self, origin: LatLon, points: Sequence[LatLon]) -> List[Leg]:
        if not points:
            return []
        legs = self._legs(self._compute_routes(origin, points, optimize=False))
        if len(legs) != len(points):
            raise ProviderError(f"Google Routes returned {len(legs)} legs for {len(points)} waypoints")
        return legs
