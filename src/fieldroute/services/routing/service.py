"""Routing orchestration service."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ...config import settings
from ...data.repository import PlanningRepository
from ...errors import FatalPlanningError, ValidationError
from ...models.domain import BalanceMetrics, Depot, Route, TimeSuggestion, Waypoint
from ...schemas.planning import (
    BalanceMetricsModel,
    CalculateRequest,
    DepotModel,
    PlanningRequest,
    PlanningResult,
    RouteModel,
    RouteSummaryModel,
    TimeSuggestionModel,
)
from ..balancing.service import BALANCE_MODES, balance_groups
from ..clustering.kmeans import cluster_waypoints
from ..geospatial import centroid, haversine_km, normalize_time, parse_time
from .optimizer import OrderingResult, RouteOptimizer
from .providers import build_navigation_url
from .timing import SimulationResult, simulate

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _validate_id(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required")
    value = value.strip()
    if not _ID_PATTERN.match(value):
        raise ValidationError(f"Invalid {field_name} '{value}'")
    return value


def _validate_date(value: str) -> None:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def _start_time(value: Optional[str]) -> str:
    return normalize_time(value or settings.default_start_time)


def validate_request(request: PlanningRequest) -> None:
    """Reject malformed requests before any data is loaded."""
    _validate_id(request.depot_id, "depot_id")
    if not request.date and not request.waypoint_ids:
        raise ValidationError("Either date or waypoint_ids is required")
    if request.date:
        _validate_date(request.date)
    for waypoint_id in request.waypoint_ids or []:
        _validate_id(waypoint_id, "waypoint_id")

    if request.max_per_route is not None and not (
        settings.min_per_route <= request.max_per_route <= settings.max_per_route
    ):
        raise ValidationError(
            f"max_per_route must be between {settings.min_per_route} and {settings.max_per_route}"
        )
    _start_time(request.start_time)
    if request.balance_mode not in BALANCE_MODES:
        raise ValidationError(f"Unknown balance mode '{request.balance_mode}'")


def _group_distance_to_depot(group: Sequence[Waypoint], depot: Depot) -> float:
    lat, lon = centroid([(w.latitude, w.longitude) for w in group])
    return haversine_km(depot.latitude, depot.longitude, lat, lon)


class RoutePlanner:
    """Loads planning inputs and turns them into one or more timed routes."""

    def __init__(
        self,
        repository: PlanningRepository,
        optimizer: RouteOptimizer,
        *,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.repository = repository
        self.optimizer = optimizer
        self.rng = rng

    def _load_depot(self, depot_id: str) -> Depot:
        depot = self.repository.get_depot(depot_id.strip())
        if not depot.has_coordinates:
            raise FatalPlanningError(f"Depot '{depot.name or depot.id}' has no coordinates")
        return depot

    def _check_waypoints(self, waypoints: Sequence[Waypoint]) -> None:
        missing = [w.code or w.id for w in waypoints if w.latitude is None or w.longitude is None]
        if missing:
            raise FatalPlanningError(f"Waypoints without coordinates: {', '.join(missing)}")
        if len(waypoints) > settings.max_waypoints:
            raise FatalPlanningError(
                f"Too many waypoints: {len(waypoints)} found, at most {settings.max_waypoints} can be planned"
            )

    def load(self, request: PlanningRequest) -> Tuple[Depot, List[Waypoint], List[str]]:
        """Depot and waypoints for a request, plus a warning for every requested id not loaded."""
        depot = self._load_depot(request.depot_id)
        warnings: list[str] = []
        if request.waypoint_ids:
            waypoints = self.repository.get_waypoints_by_ids(request.waypoint_ids)
            warnings = _skipped_warnings(request.waypoint_ids, waypoints)
        else:
            waypoints = self.repository.get_waypoints_for_date(request.date)
        if not waypoints:
            raise ValidationError("No waypoints with coordinates to plan")
        self._check_waypoints(waypoints)
        return depot, waypoints, warnings

    def plan(self, request: PlanningRequest) -> PlanningResult:
        """Validate, load, and plan a request on the single- or multi-route path."""
        validate_request(request)
        depot, waypoints, warnings = self.load(request)
        start_time = _start_time(request.start_time)

        logger.info(
            f"Planning {len(waypoints)} waypoints from depot '{depot.name}' "
            f"(max_per_route={request.max_per_route}, mode={request.balance_mode})"
        )
        if request.max_per_route and len(waypoints) > request.max_per_route:
            result = self.plan_multiple(
                waypoints,
                depot,
                request.max_per_route,
                start_time,
                balance_mode=request.balance_mode,
                allow_overtime=request.allow_overtime,
            )
        else:
            result = self.plan_single(waypoints, depot, start_time, allow_overtime=request.allow_overtime)
        if warnings:
            logger.warning(f"{len(warnings)} requested waypoint(s) were not planned")
            result.warnings = [*warnings, *result.warnings]
        return result

    def _build_route(
        self,
        route_number: int,
        waypoints: Sequence[Waypoint],
        ordering: OrderingResult,
        depot: Depot,
        start_time: str,
        allow_overtime: bool,
    ) -> Tuple[Route, SimulationResult]:
        ordered = [waypoints[i] for i in ordering.order]
        simulation = simulate(ordered, ordering.legs, start_time, allow_overtime=allow_overtime)
        origin = (depot.latitude, depot.longitude)
        points = [(w.latitude, w.longitude) for w in ordered]
        provider = self.optimizer.provider
        navigation_url = (
            provider.build_navigation_url(origin, points) if provider else build_navigation_url(origin, points)
        )
        route = Route(
            route_number=route_number,
            stops=simulation.stops,
            distance_meters=simulation.distance_meters,
            travel_minutes=simulation.travel_minutes,
            work_minutes=simulation.work_minutes,
            start_time=simulation.start_time,
            end_time=simulation.end_time,
            overtime_stop_count=simulation.overtime_stop_count,
            navigation_url=navigation_url or None,
        )
        return route, simulation

    def plan_single(
        self,
        waypoints: Sequence[Waypoint],
        depot: Depot,
        start_time: str,
        *,
        allow_overtime: bool = True,
    ) -> PlanningResult:
        ordering = self.optimizer.optimize(waypoints, depot, start_time)
        route, simulation = self._build_route(1, waypoints, ordering, depot, start_time, allow_overtime)
        return _to_result(
            [route],
            depot,
            start_time,
            reasoning=ordering.reasoning,
            suggestions=ordering.suggestions,
            warnings=simulation.warnings,
        )

    def plan_multiple(
        self,
        waypoints: Sequence[Waypoint],
        depot: Depot,
        max_per_route: int,
        start_time: str,
        *,
        balance_mode: str = "balanced",
        allow_overtime: bool = True,
    ) -> PlanningResult:
        """Cluster, balance, and optimize each group; routes are numbered nearest-first."""
        route_count = math.ceil(len(waypoints) / max_per_route)
        groups = cluster_waypoints(waypoints, route_count, depot, rng=self.rng)
        balanced = balance_groups(groups, max_per_route, balance_mode)

        ordered_groups = sorted(balanced.groups, key=lambda group: _group_distance_to_depot(group, depot))

        routes: list[Route] = []
        reasonings: list[str] = []
        suggestions: list[TimeSuggestion] = []
        warnings: list[str] = []
        for route_number, group in enumerate(ordered_groups, start=1):
            ordering = self.optimizer.optimize(group, depot, start_time)
            route, simulation = self._build_route(route_number, group, ordering, depot, start_time, allow_overtime)
            routes.append(route)
            reasonings.append(f"Route {route_number}: {ordering.reasoning}")
            suggestions.extend(ordering.suggestions)
            warnings.extend(f"Route {route_number}: {warning}" for warning in simulation.warnings)

        return _to_result(
            routes,
            depot,
            start_time,
            reasoning="\n".join(reasonings),
            suggestions=suggestions,
            warnings=warnings,
            balance=balanced.metrics,
        )

    def calculate(self, request: CalculateRequest) -> PlanningResult:
        """Timing for a caller-chosen order, without re-optimizing."""
        _validate_id(request.depot_id, "depot_id")
        if not request.waypoint_ids:
            raise ValidationError("waypoint_ids is required")
        for waypoint_id in request.waypoint_ids:
            _validate_id(waypoint_id, "waypoint_id")
        start_time = _start_time(request.start_time)

        depot = self._load_depot(request.depot_id)
        waypoints = self.repository.get_waypoints_by_ids(request.waypoint_ids)
        if not waypoints:
            raise ValidationError("No waypoints with coordinates to calculate")
        self._check_waypoints(waypoints)

        warnings = _skipped_warnings(request.waypoint_ids, waypoints)
        by_id = {w.id: w for w in waypoints}
        ordered = [by_id[wid] for wid in dict.fromkeys(request.waypoint_ids) if wid in by_id]

        ordering = OrderingResult(
            order=list(range(len(ordered))),
            legs=self.optimizer.legs_for(depot, ordered),
            reasoning="",
            source="fallback",
        )
        route, simulation = self._build_route(1, ordered, ordering, depot, start_time, request.allow_overtime)
        return _to_result([route], depot, start_time, warnings=[*warnings, *simulation.warnings])


def _skipped_warnings(requested_ids: Sequence[str], loaded: Sequence[Waypoint]) -> List[str]:
    found = {w.id for w in loaded}
    return [
        f"Waypoint '{wid}' skipped (not found or no coordinates)"
        for wid in dict.fromkeys(requested_ids)
        if wid not in found
    ]


def _to_result(
    routes: Sequence[Route],
    depot: Depot,
    start_time: str,
    *,
    reasoning: Optional[str] = None,
    suggestions: Sequence[TimeSuggestion] = (),
    warnings: Sequence[str] = (),
    balance: Optional[BalanceMetrics] = None,
) -> PlanningResult:
    end_time = start_time
    for route in routes:
        if parse_time(route.end_time, allow_overflow=True) > parse_time(end_time, allow_overflow=True):
            end_time = route.end_time

    travel = sum(route.travel_minutes for route in routes)
    work = sum(route.work_minutes for route in routes)
    summary = RouteSummaryModel(
        total_stops=sum(len(route.stops) for route in routes),
        total_distance_meters=sum(route.distance_meters for route in routes),
        total_travel_minutes=travel,
        total_work_minutes=work,
        total_duration_minutes=travel + work,
        start_time=start_time,
        end_time=end_time,
        overtime_stop_count=sum(route.overtime_stop_count for route in routes),
        depot=DepotModel(id=depot.id, name=depot.name, latitude=depot.latitude, longitude=depot.longitude),
        balance=BalanceMetricsModel.model_validate(asdict(balance)) if balance else None,
    )
    return PlanningResult(
        routes=[
            RouteModel.model_validate({**asdict(route), "duration_minutes": route.duration_minutes}) for route in routes
        ],
        summary=summary,
        reasoning=reasoning or None,
        suggestions=[TimeSuggestionModel.model_validate(asdict(s)) for s in suggestions],
        warnings=list(warnings),
    )
