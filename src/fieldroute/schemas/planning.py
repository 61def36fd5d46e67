"""Planning request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

BalanceMode = Literal["geography", "workload", "balanced"]


class PlanningRequest(BaseModel):
    schema_version: Literal[1] = 1
    date: Optional[str] = Field(default=None, description="Service date (YYYY-MM-DD) used to pull scheduled waypoints.")
    depot_id: str = Field(..., description="Garage every route starts from.")
    waypoint_ids: Optional[List[str]] = Field(
        default=None,
        description="Explicit working set. Takes precedence over date when both are given.",
    )
    max_per_route: Optional[int] = Field(
        default=None,
        description="Split into several routes with at most this many stops each.",
    )
    start_time: Optional[str] = Field(default=None, description="Route start time (HH:MM). Defaults to settings.")
    allow_overtime: bool = True
    balance_mode: BalanceMode = "balanced"


class CalculateRequest(BaseModel):
    """Timing for a caller-chosen stop order. The order is never changed."""

    schema_version: Literal[1] = 1
    depot_id: str
    waypoint_ids: List[str] = Field(..., description="Waypoints in the order they will be visited.")
    start_time: Optional[str] = None
    allow_overtime: bool = True


class LunchBreakModel(BaseModel):
    start: str
    end: str
    duration_minutes: int


class StopModel(BaseModel):
    order: int
    waypoint_id: str
    waypoint_code: Optional[str] = None
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
    appointment_status: Literal["on_time", "early_wait", "late", "no_window"]
    lunch_break: Optional[LunchBreakModel] = None
    appointment_violation: Optional[Literal["arrive_too_late", "work_exceeds_window"]] = None


class RouteModel(BaseModel):
    route_number: int
    stops: List[StopModel]
    distance_meters: int
    travel_minutes: int
    work_minutes: int
    duration_minutes: int
    start_time: str
    end_time: str
    overtime_stop_count: int
    navigation_url: Optional[str] = None


class BalanceMetricsModel(BaseModel):
    coefficient_of_variation: float
    is_balanced: bool
    workloads: List[int]
    mean_workload: int
    standard_deviation: int


class DepotModel(BaseModel):
    id: str
    name: str
    latitude: float
    longitude: float


class RouteSummaryModel(BaseModel):
    total_stops: int
    total_distance_meters: int
    total_travel_minutes: int
    total_work_minutes: int
    total_duration_minutes: int
    start_time: str
    end_time: str
    overtime_stop_count: int
    depot: DepotModel
    balance: Optional[BalanceMetricsModel] = None


class TimeSuggestionModel(BaseModel):
    waypoint_id: str
    waypoint_code: Optional[str] = None
    site_name: str
    current_time: str
    suggested_time: str
    reason: str
    savings_minutes: int


class PlanningResult(BaseModel):
    schema_version: Literal[1] = 1
    routes: List[RouteModel]
    summary: RouteSummaryModel
    reasoning: Optional[str] = None
    suggestions: List[TimeSuggestionModel] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class JobSubmitResponse(BaseModel):
    job_id: str
    status: Literal["pending"] = "pending"
    poll_url: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: Literal["pending", "processing", "completed", "failed"]
    progress: int = Field(..., ge=0, le=100)
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[PlanningResult] = None
    error: Optional[str] = None
