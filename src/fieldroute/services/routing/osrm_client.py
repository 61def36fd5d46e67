"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
from typing import List, Sequence

import httpx

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Leg
from .providers import LatLon, ProviderOrdering, RoutingProvider

logger = logging.getLogger(__name__)


def _coordinate_path(coordinates: Sequence[LatLon]) -> str:
    # OSRM expects "lon,lat;lon,lat;..."
    return ";".join(f"{lon},{lat}" for lat, lon in coordinates)


def _parse_legs(raw_legs: list) -> List[Leg]:
    return [
        Leg(
            distance_meters=round(leg.get("distance") or 0),
            duration_minutes=round((leg.get("duration") or 0) / 60),
        )
        for leg in raw_legs
    ]


class OSRMRoutingProvider(RoutingProvider):
    """Ordering through the OSRM trip service, fixed-order legs through the route service."""

    name = "OSRM"

    def __init__(self, base_url: str | None = None, profile: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile

    def _get(self, service: str, coordinates: Sequence[LatLon], params: dict) -> dict:
        url = f"{self.base_url}/{service}/v1/{self.profile}/{_coordinate_path(coordinates)}"
        data = self._send(lambda client: client.get(url, params=params))
        if data.get("code") != "Ok":
            raise ProviderError(f"OSRM {service} request failed: {data.get('message', data.get('code'))}")
        return data

    def _optimize_chunk(self, origin: LatLon, points: Sequence[LatLon]) -> ProviderOrdering:
        params = {
            "source": "first",
            "destination": "any",
            "roundtrip": "false",
            "overview": "false",
        }
        data = self._get("trip", [origin, *points], params)

        waypoints = data.get("waypoints") or []
        trips = data.get("trips") or []
        if len(waypoints) != len(points) + 1 or not trips:
            raise ProviderError("OSRM trip response is missing waypoints or trips")

        # waypoint_index is the position of each input coordinate within the trip
        positions = [(wp.get("waypoint_index"), index - 1) for index, wp in enumerate(waypoints) if index > 0]
        if any(position is None for position, _ in positions):
            raise ProviderError("OSRM trip response is missing waypoint positions")
        order = [point for _, point in sorted(positions)]
        return ProviderOrdering(order=order, legs=_parse_legs(trips[0].get("legs") or []))

    def legs_for_fixed_order(self, origin: LatLon, points: Sequence[LatLon]) -> List[Leg]:
        if not points:
            return []
        data = self._get("route", [origin, *points], {"overview": "false", "steps": "false"})
        routes = data.get("routes") or []
        if not routes:
            raise ProviderError("OSRM route response has no routes")
        legs = _parse_legs(routes[0].get("legs") or [])
        if len(legs) != len(points):
            raise ProviderError(f"OSRM returned {len(legs)} legs for {len(points)} waypoints")
        return legs

    def check_health(self) -> bool:
        """Check OSRM service health with a minimal two-point route request.

        Public OSRM endpoints may not have a /health endpoint.
        """
        test_coords = "13.388860,52.517037;13.385983,52.496891"
        url = f"{self.base_url}/route/v1/{self.profile}/{test_coords}"
        try:
            response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
            response.raise_for_status()
            return response.json().get("code") == "Ok"
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"OSRM health check failed: {exc}")
            return False
