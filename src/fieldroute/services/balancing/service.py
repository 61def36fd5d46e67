"""Workload balancing across route groups."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ...config import settings
from ...errors import ValidationError
from ...models.domain import BalanceMetrics, Waypoint
from ..geospatial import centroid, haversine_km

logger = logging.getLogger(__name__)

BALANCE_MODES = ("geography", "workload", "balanced")
WORKLOAD_WEIGHT = 0.7
DISTANCE_WEIGHT = 0.3
MAX_DISTANCE_PENALTY_KM = 100.0


@dataclass(slots=True)
class BalanceTransfer:
    waypoint_id: str
    from_group: int
    to_group: int
    distance_km: float


@dataclass(slots=True)
class BalanceResult:
    groups: List[List[Waypoint]]
    transfers: List[BalanceTransfer]
    metrics: BalanceMetrics
    mode: str


def _group_centroid(group: Sequence[Waypoint]) -> Tuple[float, float]:
    return centroid([(w.latitude, w.longitude) for w in group])


def _workload(group: Sequence[Waypoint]) -> int:
    return sum(w.work_duration_minutes or 0 for w in group)


def calculate_balance_metrics(groups: Sequence[Sequence[Waypoint]], target_cv: float | None = None) -> BalanceMetrics:
    """Coefficient of variation (percent) of per-group work minutes."""
    target = settings.target_cv_percent if target_cv is None else target_cv
    workloads = [_workload(group) for group in groups]
    if not workloads:
        return BalanceMetrics(
            coefficient_of_variation=0.0,
            is_balanced=True,
            workloads=[],
            mean_workload=0,
            standard_deviation=0,
        )

    mean = sum(workloads) / len(workloads)
    variance = sum((w - mean) ** 2 for w in workloads) / len(workloads)
    std_dev = math.sqrt(variance)
    cv = std_dev / mean * 100 if mean > 0 else 0.0
    return BalanceMetrics(
        coefficient_of_variation=round(cv, 1),
        is_balanced=cv <= target,
        workloads=workloads,
        mean_workload=round(mean),
        standard_deviation=round(std_dev),
    )


def enforce_max_per_route(
    groups: Sequence[Sequence[Waypoint]],
    max_per_route: int,
    transfers: Optional[List[BalanceTransfer]] = None,
) -> List[List[Waypoint]]:
    """Move members out of oversized groups without otherwise changing the clustering.

    The member farthest from its group's centroid goes to the nearest group with room,
    or to a new group when every other group is full.
    """
    result = [list(group) for group in groups]
    index = 0
    while index < len(result):
        while len(result[index]) > max_per_route:
            source_center = _group_centroid(result[index])

            target = -1
            best_distance = math.inf
            for other, group in enumerate(result):
                if other == index or len(group) >= max_per_route:
                    continue
                distance = haversine_km(*source_center, *_group_centroid(group)) if group else math.inf
                if target == -1 or distance < best_distance:
                    target = other
                    best_distance = distance
            if target == -1:
                result.append([])
                target = len(result) - 1

            farthest = 0
            farthest_distance = 0.0
            for position, waypoint in enumerate(result[index]):
                distance = haversine_km(waypoint.latitude, waypoint.longitude, *source_center)
                if distance > farthest_distance:
                    farthest = position
                    farthest_distance = distance

            moved = result[index].pop(farthest)
            result[target].append(moved)
            if transfers is not None:
                transfers.append(BalanceTransfer(moved.id, index, target, farthest_distance))
        index += 1
    return [group for group in result if group]


def balance_by_workload(groups: Sequence[Sequence[Waypoint]], max_per_route: int) -> List[List[Waypoint]]:
    """First-Fit-Decreasing: largest jobs first, each into the least-loaded route with room."""
    everything = [waypoint for group in groups for waypoint in group]
    route_count = max(len(groups), math.ceil(len(everything) / max_per_route))
    ordered = sorted(everything, key=lambda w: w.work_duration_minutes or 0, reverse=True)

    routes: list[list[Waypoint]] = [[] for _ in range(route_count)]
    loads = [0] * route_count
    for waypoint in ordered:
        best = -1
        for index in range(route_count):
            if len(routes[index]) < max_per_route and (best == -1 or loads[index] < loads[best]):
                best = index
        routes[best].append(waypoint)
        loads[best] += waypoint.work_duration_minutes or 0
    return [route for route in routes if route]


def _best_move(
    source: Sequence[Waypoint],
    target: Sequence[Waypoint],
    source_load: int,
    target_load: int,
) -> Optional[Tuple[int, float]]:
    target_center = _group_centroid(target)
    imbalance = source_load - target_load

    best: Optional[Tuple[int, float]] = None
    best_score = -math.inf
    for position, waypoint in enumerate(source):
        work = waypoint.work_duration_minutes or 0
        if work == 0:
            continue
        new_imbalance = abs((source_load - work) - (target_load + work))
        if new_imbalance >= imbalance:
            continue
        improvement = (imbalance - new_imbalance) / imbalance
        distance = haversine_km(waypoint.latitude, waypoint.longitude, *target_center)
        penalty = min(distance / MAX_DISTANCE_PENALTY_KM, 1.0)
        score = improvement * WORKLOAD_WEIGHT - penalty * DISTANCE_WEIGHT
        if score > best_score:
            best = (position, distance)
            best_score = score
    return best


def balance_hybrid(
    groups: Sequence[Sequence[Waypoint]],
    max_per_route: int,
    *,
    target_cv: float | None = None,
    max_iterations: int | None = None,
    transfers: Optional[List[BalanceTransfer]] = None,
) -> List[List[Waypoint]]:
    """Keep the geographic grouping, then shift single jobs from the busiest group to the
    idlest one until the coefficient of variation meets the target."""
    target_cv = settings.target_cv_percent if target_cv is None else target_cv
    max_iterations = settings.balance_max_iterations if max_iterations is None else max_iterations

    result = enforce_max_per_route(groups, max_per_route, transfers)
    if len(result) <= 1:
        return result

    for _ in range(max_iterations):
        if calculate_balance_metrics(result, target_cv).is_balanced:
            break

        loads = [_workload(group) for group in result]
        busiest = loads.index(max(loads))
        idlest = -1
        for index, group in enumerate(result):
            if index != busiest and len(group) < max_per_route and (idlest == -1 or loads[index] < loads[idlest]):
                idlest = index
        if idlest == -1 or len(result[busiest]) <= 1:
            break

        move = _best_move(result[busiest], result[idlest], loads[busiest], loads[idlest])
        if move is None:
            break
        position, distance = move
        moved = result[busiest].pop(position)
        result[idlest].append(moved)
        if transfers is not None:
            transfers.append(BalanceTransfer(moved.id, busiest, idlest, distance))

    return [group for group in result if group]


def balance_groups(
    groups: Sequence[Sequence[Waypoint]],
    max_per_route: int,
    mode: str = "balanced",
    *,
    target_cv: float | None = None,
    max_iterations: int | None = None,
) -> BalanceResult:
    """Apply a balancing mode and report the resulting balance metrics."""
    if mode not in BALANCE_MODES:
        raise ValidationError(f"Unknown balance mode '{mode}', expected one of {', '.join(BALANCE_MODES)}")
    if max_per_route < 1:
        raise ValidationError("max_per_route must be >= 1")

    transfers: list[BalanceTransfer] = []
    if mode == "geography":
        balanced = enforce_max_per_route(groups, max_per_route, transfers)
    elif mode == "workload":
        balanced = balance_by_workload(groups, max_per_route)
    else:
        balanced = balance_hybrid(
            groups,
            max_per_route,
            target_cv=target_cv,
            max_iterations=max_iterations,
            transfers=transfers,
        )

    metrics = calculate_balance_metrics(balanced, target_cv)
    logger.info(
        f"Balanced {sum(len(g) for g in balanced)} waypoints into {len(balanced)} routes "
        f"(mode={mode}, cv={metrics.coefficient_of_variation}%, transfers={len(transfers)})"
    )
    return BalanceResult(groups=balanced, transfers=transfers, metrics=metrics, mode=mode)
