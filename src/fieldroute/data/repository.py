"""Read access to depots and waypoints."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Sequence

from ..errors import NotFoundError
from ..models.domain import Depot, Waypoint

logger = logging.getLogger(__name__)


class PlanningRepository(ABC):
    """Contract for the depot/waypoint store used by the planner."""

    @abstractmethod
    def get_depot(self, depot_id: str) -> Depot:
        """Return the depot or raise NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    def get_waypoints_for_date(self, date: str) -> List[Waypoint]:
        raise NotImplementedError

    @abstractmethod
    def get_waypoints_by_ids(self, waypoint_ids: Sequence[str]) -> List[Waypoint]:
        raise NotImplementedError


def with_coordinates(waypoints: Iterable[Waypoint]) -> List[Waypoint]:
    """Drop waypoints missing latitude or longitude, logging what was excluded."""
    kept: list[Waypoint] = []
    excluded: list[str] = []
    for waypoint in waypoints:
        if waypoint.latitude is None or waypoint.longitude is None:
            excluded.append(f"{waypoint.code or waypoint.id} ({waypoint.site_name or 'unknown site'})")
        else:
            kept.append(waypoint)
    if excluded:
        logger.warning(f"Waypoints excluded (no coordinates): {', '.join(excluded)}")
    return kept


class InMemoryRepository(PlanningRepository):
    def __init__(self, depots: Iterable[Depot] = (), waypoints: Iterable[Waypoint] = ()) -> None:
        self.depots = {depot.id: depot for depot in depots}
        self.waypoints = list(waypoints)

    def get_depot(self, depot_id: str) -> Depot:
        depot = self.depots.get(depot_id)
        if depot is None:
            raise NotFoundError(f"Depot '{depot_id}' not found")
        return depot

    def get_waypoints_for_date(self, date: str) -> List[Waypoint]:
        return with_coordinates(w for w in self.waypoints if w.appointment_date == date)

    def get_waypoints_by_ids(self, waypoint_ids: Sequence[str]) -> List[Waypoint]:
        by_id = {waypoint.id: waypoint for waypoint in self.waypoints}
        unknown = [wid for wid in dict.fromkeys(waypoint_ids) if wid not in by_id]
        if unknown:
            logger.warning(f"Unknown waypoint ids: {', '.join(unknown)}")
        return with_coordinates(by_id[wid] for wid in dict.fromkeys(waypoint_ids) if wid in by_id)
