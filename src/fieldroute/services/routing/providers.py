"""Routing provider contract, chunked ordering, and provider selection."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Leg

logger = logging.getLogger(__name__)

LatLon = Tuple[float, float]
NAVIGATION_BASE_URL = "https://www.google.com/maps/dir/?api=1"


@dataclass(slots=True)
class ProviderOrdering:
    order: List[int]
    legs: List[Leg]


def build_navigation_url(origin: LatLon, ordered_points: Sequence[LatLon]) -> str:
    """Google Maps directions link for a round trip: depot, stops in order, back to depot."""
    if not ordered_points:
        return ""
    origin_str = f"{origin[0]},{origin[1]}"
    url = f"{NAVIGATION_BASE_URL}&origin={origin_str}&destination={origin_str}&travelmode=driving"
    waypoints = "|".join(f"{lat},{lon}" for lat, lon in ordered_points)
    return f"{url}&waypoints={quote(waypoints, safe='')}"


class RoutingProvider(ABC):
    """Road-network ordering and leg lookup.

    Requests above ``chunk_size`` waypoints are split into sequential chunks; each chunk
    starts from the last stop of the previous optimized chunk. Ordering is then only
    optimal within a chunk.
    """

    name = "provider"

    def __init__(
        self,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        chunk_size: int | None = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.provider_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.provider_backoff_seconds
        self.chunk_size = chunk_size or settings.provider_chunk_size

    def _get_client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0))

    def _send(self, request: Callable[[httpx.Client], httpx.Response]) -> dict:
        """Run an HTTP call with retries and exponential backoff; failures become ProviderError."""
        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = request(client)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    if status_code < 500 and status_code != 429:
                        raise ProviderError(
                            f"{self.name} request rejected ({status_code}): {exc.response.text[:200]}"
                        ) from exc
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ProviderError(f"{self.name} request failed with {status_code}") from exc
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"{self.name} request failed after {self.max_retries} retries: {exc}")
                        raise ProviderError(f"{self.name} is not reachable: {exc}") from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(
                        f"{self.name} network error, retrying in {wait_time:.1f}s "
                        f"(attempt {attempt}/{self.max_retries}): {exc}"
                    )
                    time.sleep(wait_time)
                except ValueError as exc:
                    raise ProviderError(f"{self.name} returned malformed JSON") from exc
        finally:
            client.close()

    def optimize_order(self, origin: LatLon, points: Sequence[LatLon]) -> ProviderOrdering:
        """Visiting order (indices into ``points``) and the leg into each visited point."""
        if not points:
            return ProviderOrdering(order=[], legs=[])
        if len(points) <= self.chunk_size:
            result = self._optimize_chunk(origin, points)
            _check_ordering(result, len(points), self.name)
            return result

        logger.info(f"Chunking {self.name} ordering request: {len(points)} waypoints (max per request: {self.chunk_size})")
        order: list[int] = []
        legs: list[Leg] = []
        current = origin
        for offset in range(0, len(points), self.chunk_size):
            chunk = list(points[offset : offset + self.chunk_size])
            result = self._optimize_chunk(current, chunk)
            _check_ordering(result, len(chunk), self.name)
            order.extend(offset + index for index in result.order)
            legs.extend(result.legs)
            current = chunk[result.order[-1]]
        return ProviderOrdering(order=order, legs=legs)

    @abstractmethod
    def _optimize_chunk(self, origin: LatLon, points: Sequence[LatLon]) -> ProviderOrdering:
        raise NotImplementedError

    @abstractmethod
    def legs_for_fixed_order(self, origin: LatLon, points: Sequence[LatLon]) -> List[Leg]:
        """Legs for visiting ``points`` exactly in the given order."""
        raise NotImplementedError

    def build_navigation_url(self, origin: LatLon, ordered_points: Sequence[LatLon]) -> str:
        return build_navigation_url(origin, ordered_points)

    def check_health(self) -> bool:
        return True


def _check_ordering(result: ProviderOrdering, count: int, name: str) -> None:
    if sorted(result.order) != list(range(count)):
        raise ProviderError(f"{name} returned an order that is not a permutation of {count} waypoints")
    if len(result.legs) != count:
        raise ProviderError(f"{name} returned {len(result.legs)} legs for {count} waypoints")


def get_routing_provider() -> Optional[RoutingProvider]:
    """Provider selected by settings, or None when routing is not configured."""
    if settings.routing_provider == "osrm":
        if not settings.osrm_base_url:
            logger.warning("OSRM routing selected but FIELDROUTE_OSRM_BASE_URL is not set")
            return None
        from .osrm_client import OSRMRoutingProvider

        return OSRMRoutingProvider()
    if settings.routing_provider == "google":
        if not settings.google_api_key:
            logger.warning("Google routing selected but FIELDROUTE_GOOGLE_API_KEY is not set")
            return None
        from .google_routes import GoogleRoutesProvider

        return GoogleRoutesProvider()
    return None
