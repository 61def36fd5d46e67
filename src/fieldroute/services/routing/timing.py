"""Per-stop schedule simulation: travel, appointment windows, lunch, and overtime."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ...config import settings
from ...models.domain import Leg, LunchBreak, Stop, Waypoint
from ..geospatial import format_time, parse_time

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LunchConfig:
    start: str = "12:00"
    duration_minutes: int = 60
    min_work_before_minutes: int = 10

    @classmethod
    def from_settings(cls) -> "LunchConfig":
        return cls(
            start=settings.lunch_start,
            duration_minutes=settings.lunch_duration_minutes,
            min_work_before_minutes=settings.min_work_before_lunch_minutes,
        )


@dataclass(slots=True)
class SimulationResult:
    stops: List[Stop]
    start_time: str
    end_time: str
    lunch_break: Optional[LunchBreak]
    overtime_stop_count: int
    distance_meters: int
    travel_minutes: int
    work_minutes: int
    wait_minutes: int
    warnings: List[str] = field(default_factory=list)


def _appointment_status(arrival: int, window: Optional[tuple[int, int]]) -> tuple[str, Optional[str]]:
    if window is None:
        return "no_window", None
    start, end = window
    if arrival < start:
        return "early_wait", None
    if arrival <= end:
        return "on_time", None
    return "late", "arrive_too_late"


def simulate(
    waypoints: Sequence[Waypoint],
    legs: Sequence[Leg],
    start_time: str,
    *,
    lunch: LunchConfig | None = None,
    allow_overtime: bool = True,
    work_day_end: str | None = None,
) -> SimulationResult:
    """Compute arrival, work, and departure times for waypoints visited in the given order.

    ``legs[i]`` is the travel into ``waypoints[i]`` (the first leg starts at the depot).
    Lunch is placed at most once per route. Late arrivals and overtime are reported on
    the stops, the schedule is always produced in full.
    """
    if len(legs) != len(waypoints):
        raise ValueError(f"Expected {len(waypoints)} legs, got {len(legs)}")

    lunch = lunch or LunchConfig.from_settings()
    lunch_start = parse_time(lunch.start)
    lunch_end = lunch_start + lunch.duration_minutes
    day_end = parse_time(work_day_end or settings.work_day_end)

    current = parse_time(start_time)
    lunch_settled = False
    route_lunch: Optional[LunchBreak] = None
    stops: list[Stop] = []
    warnings: list[str] = []
    overtime = 0
    total_distance = total_travel = total_work = total_wait = 0

    for index, (waypoint, leg) in enumerate(zip(waypoints, legs), start=1):
        work = max(0, int(waypoint.work_duration_minutes or 0))
        arrival = current + leg.duration_minutes

        window_obj = waypoint.appointment_window
        window = (parse_time(window_obj.start), parse_time(window_obj.end)) if window_obj else None
        status, violation = _appointment_status(arrival, window)

        ready = max(arrival, window[0]) if window else arrival
        work_start = ready
        work_end: Optional[int] = None
        stop_lunch: Optional[LunchBreak] = None

        if not lunch_settled:
            if lunch_start <= ready < lunch_end:
                work_start = lunch_end
                stop_lunch = LunchBreak(format_time(lunch_start), format_time(lunch_end), lunch.duration_minutes)
            elif ready < lunch_start:
                if ready + work > lunch_start:
                    before_lunch = lunch_start - ready
                    if before_lunch >= lunch.min_work_before_minutes and work > before_lunch:
                        work_end = lunch_end + (work - before_lunch)
                    else:
                        work_start = lunch_end
                    stop_lunch = LunchBreak(format_time(lunch_start), format_time(lunch_end), lunch.duration_minutes)
            else:
                lunch_settled = True
            if stop_lunch is not None:
                lunch_settled = True
                route_lunch = stop_lunch

        if work_end is None:
            work_end = work_start + work
        departure = work_end

        if window and violation is None and departure > window[1]:
            violation = "work_exceeds_window"

        is_overtime = departure > day_end
        if is_overtime:
            overtime += 1
            if not allow_overtime:
                message = (
                    f"Stop {index} ({waypoint.site_name}) departs at {format_time(departure)}, "
                    f"after the {format_time(day_end)} end of day"
                )
                logger.warning(message)
                warnings.append(message)

        wait = work_start - arrival
        stops.append(
            Stop(
                order=index,
                waypoint_id=waypoint.id,
                waypoint_code=waypoint.code,
                site_name=waypoint.site_name,
                latitude=waypoint.latitude,
                longitude=waypoint.longitude,
                estimated_arrival=format_time(arrival),
                work_start=format_time(work_start),
                work_end=format_time(work_end),
                estimated_departure=format_time(departure),
                travel_minutes=leg.duration_minutes,
                work_minutes=work,
                wait_minutes=wait,
                distance_meters=leg.distance_meters,
                is_overtime=is_overtime,
                appointment_status=status,
                lunch_break=stop_lunch,
                appointment_violation=violation,
            )
        )

        current = departure
        total_distance += leg.distance_meters
        total_travel += leg.duration_minutes
        total_work += work
        total_wait += wait

    return SimulationResult(
        stops=stops,
        start_time=format_time(parse_time(start_time)),
        end_time=format_time(current),
        lunch_break=route_lunch,
        overtime_stop_count=overtime,
        distance_meters=total_distance,
        travel_minutes=total_travel,
        work_minutes=total_work,
        wait_minutes=total_wait,
        warnings=warnings,
    )
