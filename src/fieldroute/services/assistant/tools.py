"""Tool calls the route assistant may make, and their local execution."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Annotated, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ...config import settings
from ...errors import ProviderError, ValidationError
from ...models.domain import Depot, TimeSuggestion, Waypoint
from ..geospatial import format_time, haversine_km, normalize_time, parse_time, travel_minutes

GARAGE_INDEX = -1


class CalculateDistance(BaseModel):
    name: Literal["calculate_distance"]
    from_index: int
    to_index: int


class CheckTimeFeasibility(BaseModel):
    name: Literal["check_time_feasibility"]
    stop_index: int
    arrival_time: str


class SimulateRoute(BaseModel):
    name: Literal["simulate_route"]
    order: List[int]
    start_time: str


class SuggestTimeChange(BaseModel):
    name: Literal["suggest_time_change"]
    stop_index: int
    suggested_time: str
    reason: str
    savings_minutes: int = 0


class FinalizeRoute(BaseModel):
    name: Literal["finalize_route"]
    order: List[int]
    reasoning: str = ""


ToolCall = Annotated[
    Union[CalculateDistance, CheckTimeFeasibility, SimulateRoute, SuggestTimeChange, FinalizeRoute],
    Field(discriminator="name"),
]
_tool_call_adapter: TypeAdapter[ToolCall] = TypeAdapter(ToolCall)


def parse_tool_call(name: str, arguments: str | dict | None) -> ToolCall:
    """Build a typed tool call from the function name and its arguments.

    Arguments normally arrive as a JSON string; some compatible servers send the object itself.
    """
    if isinstance(arguments, dict):
        payload = arguments
    else:
        try:
            payload = json.loads(arguments or "{}")
        except (TypeError, json.JSONDecodeError) as exc:
            raise ProviderError(f"Assistant sent malformed arguments for {name}") from exc
    if not isinstance(payload, dict):
        raise ProviderError(f"Assistant sent non-object arguments for {name}")
    try:
        return _tool_call_adapter.validate_python({**payload, "name": name})
    except PydanticValidationError as exc:
        raise ProviderError(f"Assistant sent an invalid {name} call: {exc.error_count()} errors") from exc


ROUTE_TOOLS: list[dict] = [
    {
        "type": "function",
        "function": {
            "name": "calculate_distance",
            "description": "Calculate distance and estimated travel time between two locations",
            "parameters": {
                "type": "object",
                "properties": {
                    "from_index": {"type": "number", "description": "Index of origin stop (use -1 for the garage)"},
                    "to_index": {"type": "number", "description": "Index of destination stop"},
                },
                "required": ["from_index", "to_index"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "check_time_feasibility",
            "description": "Check if visiting a stop at a given time is feasible for its appointment",
            "parameters": {
                "type": "object",
                "properties": {
                    "stop_index": {"type": "number", "description": "Index of the stop to check"},
                    "arrival_time": {"type": "string", "description": "Proposed arrival time (HH:MM)"},
                },
                "required": ["stop_index", "arrival_time"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "simulate_route",
            "description": "Simulate a route with given order and return total time and any violations",
            "parameters": {
                "type": "object",
                "properties": {
                    "order": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "Array of stop indices in proposed order",
                    },
                    "start_time": {"type": "string", "description": "Route start time (HH:MM)"},
                },
                "required": ["order", "start_time"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "suggest_time_change",
            "description": "Suggest a new appointment time for a customer to improve route efficiency",
            "parameters": {
                "type": "object",
                "properties": {
                    "stop_index": {"type": "number", "description": "Index of the stop"},
                    "suggested_time": {"type": "string", "description": "Suggested new appointment time (HH:MM)"},
                    "reason": {"type": "string", "description": "Reason for the suggestion"},
                    "savings_minutes": {"type": "number", "description": "Estimated time savings in minutes"},
                },
                "required": ["stop_index", "suggested_time", "reason"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "finalize_route",
            "description": "Finalize the optimized route with the best order found",
            "parameters": {
                "type": "object",
                "properties": {
                    "order": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "Final optimized order of stop indices",
                    },
                    "reasoning": {"type": "string", "description": "Explanation of the optimization"},
                },
                "required": ["order", "reasoning"],
            },
        },
    },
]


@dataclass(slots=True)
class ToolOutcome:
    result: dict
    final_order: Optional[List[int]] = None
    reasoning: str = ""


@dataclass(slots=True)
class ToolContext:
    """State the tools read from (the stops and depot) and write to (suggestions)."""

    waypoints: Sequence[Waypoint]
    depot: Depot
    suggestions: List[TimeSuggestion] = field(default_factory=list)

    def _appointment(self, waypoint: Waypoint) -> Optional[int]:
        if not waypoint.appointment_start:
            return None
        try:
            return parse_time(waypoint.appointment_start)
        except ValidationError:
            return None

    def _stop(self, index: int) -> Optional[Waypoint]:
        if 0 <= index < len(self.waypoints):
            return self.waypoints[index]
        return None

    def execute(self, call: ToolCall) -> ToolOutcome:
        try:
            match call:
                case CalculateDistance():
                    return ToolOutcome(self._calculate_distance(call))
                case CheckTimeFeasibility():
                    return ToolOutcome(self._check_time_feasibility(call))
                case SimulateRoute():
                    return ToolOutcome(self._simulate_route(call))
                case SuggestTimeChange():
                    return ToolOutcome(self._suggest_time_change(call))
                case FinalizeRoute():
                    return ToolOutcome({"success": True}, final_order=list(call.order), reasoning=call.reasoning)
        except ValidationError as exc:
            return ToolOutcome({"error": str(exc)})
        raise ProviderError(f"Unsupported tool call {call!r}")

    def _calculate_distance(self, call: CalculateDistance) -> dict:
        if call.from_index == GARAGE_INDEX:
            origin = (self.depot.latitude, self.depot.longitude)
            origin_name = "garage"
        else:
            source = self._stop(call.from_index)
            if source is None:
                return {"error": "Invalid from_index"}
            origin = (source.latitude, source.longitude)
            origin_name = source.site_name
        target = self._stop(call.to_index)
        if target is None:
            return {"error": "Invalid to_index"}

        distance_km = haversine_km(origin[0], origin[1], target.latitude, target.longitude)
        return {
            "distance_km": round(distance_km, 1),
            "travel_minutes": travel_minutes(origin[0], origin[1], target.latitude, target.longitude, settings.average_speed_kmh),
            "from": origin_name,
            "to": target.site_name,
        }

    def _check_time_feasibility(self, call: CheckTimeFeasibility) -> dict:
        stop = self._stop(call.stop_index)
        if stop is None:
            return {"error": "Invalid stop index"}
        arrival = parse_time(call.arrival_time)
        appointment = self._appointment(stop)

        status = "no_appointment"
        wait_minutes = late_minutes = 0
        if appointment is not None:
            if arrival < appointment:
                status = "early"
                wait_minutes = appointment - arrival
            elif arrival <= appointment + settings.late_tolerance_minutes:
                status = "on_time"
            else:
                status = "late"
                late_minutes = arrival - appointment
        return {
            "stop": stop.site_name,
            "appointment_time": format_time(appointment) if appointment is not None else "none",
            "arrival_time": format_time(arrival),
            "status": status,
            "wait_minutes": wait_minutes,
            "late_minutes": late_minutes,
            "feasible": status != "late",
        }

    def _simulate_route(self, call: SimulateRoute) -> dict:
        start = parse_time(call.start_time)
        current = start
        travel_total = work_total = wait_total = 0
        violations: list[str] = []
        lat, lon = self.depot.latitude, self.depot.longitude

        for index in call.order:
            stop = self._stop(index)
            if stop is None:
                violations.append(f"Unknown stop index {index}")
                continue
            minutes = travel_minutes(lat, lon, stop.latitude, stop.longitude, settings.average_speed_kmh)
            current += minutes
            travel_total += minutes

            appointment = self._appointment(stop)
            if appointment is not None:
                if current < appointment:
                    wait_total += appointment - current
                    current = appointment
                elif current > appointment + settings.late_tolerance_minutes:
                    violations.append(f"{stop.site_name}: late by {current - appointment} minutes")

            current += stop.work_duration_minutes
            work_total += stop.work_duration_minutes
            lat, lon = stop.latitude, stop.longitude

        return {
            "total_travel_minutes": travel_total,
            "total_work_minutes": work_total,
            "total_wait_minutes": wait_total,
            "total_minutes": current - start,
            "end_time": format_time(current),
            "violations": violations,
            "feasible": not violations,
        }

    def _suggest_time_change(self, call: SuggestTimeChange) -> dict:
        stop = self._stop(call.stop_index)
        if stop is None or not stop.appointment_start:
            return {"error": "Invalid stop or no appointment time"}
        self.suggestions.append(
            TimeSuggestion(
                waypoint_id=stop.id,
                waypoint_code=stop.code,
                site_name=stop.site_name,
                current_time=normalize_time(stop.appointment_start),
                suggested_time=normalize_time(call.suggested_time),
                reason=call.reason,
                savings_minutes=call.savings_minutes,
            )
        )
        return {"success": True, "message": "Time suggestion recorded"}
