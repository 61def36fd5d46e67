"""Domain models for waypoints, depots, and planned routes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from ..schemas.planning import PlanningRequest, PlanningResult


@dataclass(slots=True, frozen=True)
class AppointmentWindow:
    start: str
    end: str


@dataclass(slots=True, frozen=True)
class Waypoint:
    """A job site to visit, with optional appointment times and an estimated work duration."""

    id: str
    code: Optional[str]
    site_id: Optional[str]
    site_name: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_start: Optional[str] = None
    appointment_end: Optional[str] = None
    work_type_code: Optional[str] = None
    work_type_name: Optional[str] = None
    work_duration_minutes: int = 0

    @property
    def appointment_window(self) -> Optional[AppointmentWindow]:
        if self.appointment_start and self.appointment_end:
            return AppointmentWindow(start=self.appointment_start, end=self.appointment_end)
        return None


@dataclass(slots=True, frozen=True)
class Depot:
    """Represents a garage where every route starts."""

    id: str
    name: str
    latitude: Optional[float]
    longitude: Optional[float]

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(slots=True)
class Leg:
    distance_meters: int
    duration_minutes: int


@dataclass(slots=True)
class LunchBreak:
    start: str
    end: str
    duration_minutes: int


@dataclass(slots=True)
class Stop:
    order: int
    waypoint_id: str
    waypoint_code: Optional[str]
    site_name: str
    latitude: float
    longitude: float
    estimated_arrival: str
    work_start: str
    work_end: str
    estimated_departure: str
    travel_minutes: int
    work_minutes: int
    wait_minutes: int
    distance_meters: int
    is_overtime: bool
    appointment_status: str
    lunch_break: Optional[LunchBreak] = None
    appointment_violation: Optional[str] = None


@dataclass(slots=True)
class Route:
    route_number: int
    stops: List[Stop]
    distance_meters: int
    travel_minutes: int
    work_minutes: int
    start_time: str
    end_time: str
    overtime_stop_count: int
    navigation_url: Optional[str] = None

    @property
    def duration_minutes(self) -> int:
        return self.travel_minutes + self.work_minutes


@dataclass(slots=True)
class BalanceMetrics:
    coefficient_of_variation: float
    is_balanced: bool
    workloads: List[int]
    mean_workload: int
    standard_deviation: int


@dataclass(slots=True)
class TimeSuggestion:
    """Advisory appointment change proposed by the assistant. Never applied automatically."""

    waypoint_id: str
    waypoint_code: Optional[str]
    site_name: str
    current_time: str
    suggested_time: str
    reason: str
    savings_minutes: int


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(slots=True)
class PlanningJob:
    id: str
    status: JobStatus
    request: "PlanningRequest"
    created_at: datetime
    result: Optional["PlanningResult"] = None
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
