"""Geographic k-means clustering of waypoints on great-circle distance."""

from __future__ import annotations

import logging
from typing import List, Literal, Sequence

import numpy as np

from ...config import settings
from ...models.domain import Depot, Waypoint
from ..geospatial import EARTH_RADIUS_KM

logger = logging.getLogger(__name__)

SeedingStrategy = Literal["kmeans++", "farthest"]


def _haversine_matrix(points: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """Distances in km between every point (rows) and every center (columns)."""
    lat1 = np.radians(points[:, 0])[:, None]
    lon1 = np.radians(points[:, 1])[:, None]
    lat2 = np.radians(centers[:, 0])[None, :]
    lon2 = np.radians(centers[:, 1])[None, :]
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def _seed_kmeans_plus_plus(coords: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    centers = [coords[int(rng.integers(len(coords)))]]
    while len(centers) < k:
        nearest = _haversine_matrix(coords, np.array(centers)).min(axis=1)
        weights = nearest**2
        total = float(weights.sum())
        if total == 0:
            break
        threshold = rng.random() * total
        index = int(np.searchsorted(np.cumsum(weights), threshold, side="left"))
        centers.append(coords[min(index, len(coords) - 1)])
    return np.array(centers)


def _seed_farthest(coords: np.ndarray, k: int, depot: Depot) -> np.ndarray:
    from_depot = _haversine_matrix(coords, np.array([[depot.latitude, depot.longitude]]))[:, 0]
    centers = [coords[int(np.argmax(from_depot))]]
    while len(centers) < k:
        nearest = _haversine_matrix(coords, np.array(centers)).min(axis=1)
        if float(nearest.max()) == 0:
            break
        centers.append(coords[int(np.argmax(nearest))])
    return np.array(centers)


def cluster_waypoints(
    waypoints: Sequence[Waypoint],
    k: int,
    depot: Depot,
    *,
    rng: np.random.Generator | None = None,
    seeding: SeedingStrategy | None = None,
    max_iterations: int | None = None,
    tolerance_degrees: float | None = None,
) -> List[List[Waypoint]]:
    """Partition waypoints into at most ``k`` geographic groups.

    Seeding is k-means++ by default, drawing from ``rng`` (or a generator seeded
    with ``settings.cluster_seed``). ``seeding="farthest"`` is fully deterministic:
    the first center is the waypoint farthest from the depot, each next one the
    waypoint farthest from all chosen centers. Lloyd iterations stop once no center
    moves more than ``tolerance_degrees`` in latitude or longitude. Empty groups are
    dropped, so fewer than ``k`` groups may come back.
    """
    if k < 1:
        raise ValueError("k must be >= 1")
    if not waypoints:
        return []
    if len(waypoints) <= k:
        return [[waypoint] for waypoint in waypoints]

    seeding = seeding or settings.cluster_seeding
    max_iterations = max_iterations or settings.cluster_max_iterations
    tolerance = settings.cluster_tolerance_degrees if tolerance_degrees is None else tolerance_degrees

    coords = np.array([[w.latitude, w.longitude] for w in waypoints], dtype=float)
    if seeding == "farthest":
        centers = _seed_farthest(coords, k, depot)
    else:
        centers = _seed_kmeans_plus_plus(coords, k, rng or np.random.default_rng(settings.cluster_seed))

    labels = np.zeros(len(coords), dtype=int)
    for iteration in range(max_iterations):
        labels = np.argmin(_haversine_matrix(coords, centers), axis=1)
        updated = centers.copy()
        for index in range(len(centers)):
            members = coords[labels == index]
            if len(members):
                updated[index] = members.mean(axis=0)
        converged = bool(np.all(np.abs(updated - centers) <= tolerance))
        centers = updated
        if converged:
            logger.debug(f"k-means converged after {iteration + 1} iterations")
            break

    groups: list[list[Waypoint]] = [[] for _ in range(len(centers))]
    for waypoint, label in zip(waypoints, labels):
        groups[int(label)].append(waypoint)
    return [group for group in groups if group]
