import numpy as np
import pytest

from fieldroute.config import settings
from fieldroute.data.repository import InMemoryRepository
from fieldroute.errors import FatalPlanningError, NotFoundError, ValidationError
from fieldroute.models.domain import Depot, Waypoint
from fieldroute.schemas.planning import CalculateRequest, PlanningRequest
from fieldroute.services.routing.optimizer import RouteOptimizer
from fieldroute.services.routing.service import RoutePlanner

DATE = "2026-03-02"
DEPOT = Depot(id="G1", name="Main garage", latitude=13.75, longitude=100.50)


def _waypoint(wid: str, lat: float, lon: float, work: int = 30, date: str = DATE, **kwargs) -> Waypoint:
    return Waypoint(
        id=wid,
        code=f"T-{wid}",
        site_id=None,
        site_name=f"Site {wid}",
        latitude=lat,
        longitude=lon,
        appointment_date=date,
        work_duration_minutes=work,
        **kwargs,
    )


def _planner(waypoints, depots=(DEPOT,)) -> RoutePlanner:
    repository = InMemoryRepository(depots=depots, waypoints=waypoints)
    return RoutePlanner(repository, RouteOptimizer(), rng=np.random.default_rng(0))


def _grid(count: int) -> list[Waypoint]:
    return [
        _waypoint(f"W{i:02d}", 13.70 + (i % 4) * 0.03, 100.45 + (i // 4) * 0.03, work=15 + (i * 13) % 60)
        for i in range(count)
    ]


def _stop_ids(result) -> list[str]:
    return [stop.waypoint_id for route in result.routes for stop in route.stops]


def test_single_route_plan():
    waypoints = [_waypoint("A", 13.80, 100.55), _waypoint("B", 13.76, 100.51), _waypoint("C", 13.78, 100.53)]

    result = _planner(waypoints).plan(PlanningRequest(date=DATE, depot_id="G1"))

    assert len(result.routes) == 1
    route = result.routes[0]
    assert route.route_number == 1
    assert [stop.order for stop in route.stops] == [1, 2, 3]
    assert sorted(_stop_ids(result)) == ["A", "B", "C"]
    assert route.navigation_url.startswith("https://www.google.com/maps/dir/?api=1")
    assert result.summary.total_stops == 3
    assert result.summary.total_work_minutes == 90
    assert result.summary.start_time == "08:00"
    assert result.summary.end_time == route.end_time
    assert result.summary.balance is None
    assert result.reasoning.startswith("Greedy")


def test_max_per_route_at_or_above_count_stays_single():
    waypoints = [_waypoint("A", 13.80, 100.55), _waypoint("B", 13.76, 100.51)]

    result = _planner(waypoints).plan(PlanningRequest(date=DATE, depot_id="G1", max_per_route=2))

    assert len(result.routes) == 1
    assert result.summary.balance is None


def test_split_into_balanced_routes():
    waypoints = [
        _waypoint("A", 13.80, 100.55, work=30),
        _waypoint("B", 13.81, 100.56, work=45),
        _waypoint("C", 13.85, 100.60, work=60),
    ]

    result = _planner(waypoints).plan(PlanningRequest(date=DATE, depot_id="G1", max_per_route=2))

    assert len(result.routes) == 2
    assert [route.route_number for route in result.routes] == [1, 2]
    assert result.summary.total_stops == 3
    assert sorted(route.work_minutes for route in result.routes) == [60, 75]
    assert result.summary.balance.is_balanced
    assert result.reasoning.startswith("Route 1: ")


@pytest.mark.parametrize("mode", ["geography", "workload", "balanced"])
def test_every_waypoint_planned_once_within_capacity(mode):
    waypoints = _grid(17)

    result = _planner(waypoints).plan(
        PlanningRequest(date=DATE, depot_id="G1", max_per_route=5, balance_mode=mode)
    )

    assert sorted(_stop_ids(result)) == sorted(w.id for w in waypoints)
    assert all(len(route.stops) <= 5 for route in result.routes)
    assert len(result.routes) >= 4
    assert result.summary.total_stops == 17
    assert result.summary.end_time == max(route.end_time for route in result.routes)


def test_routes_are_numbered_nearest_first():
    near = [_waypoint(f"N{i}", 13.76 + i * 0.001, 100.51) for i in range(3)]
    far = [_waypoint(f"F{i}", 14.50 + i * 0.001, 100.90) for i in range(3)]

    result = _planner(far + near).plan(PlanningRequest(date=DATE, depot_id="G1", max_per_route=3))

    assert {stop.waypoint_id for stop in result.routes[0].stops} == {"N0", "N1", "N2"}


def test_waypoint_ids_take_precedence_over_date():
    waypoints = [_waypoint("A", 13.80, 100.55), _waypoint("B", 13.76, 100.51, date="2026-03-05")]

    result = _planner(waypoints).plan(PlanningRequest(date=DATE, depot_id="G1", waypoint_ids=["B"]))

    assert _stop_ids(result) == ["B"]


def test_unknown_and_unlocated_waypoint_ids_are_reported():
    waypoints = [
        _waypoint("A", 13.80, 100.55),
        _waypoint("B", 13.76, 100.51),
        _waypoint("C", None, None),
    ]

    result = _planner(waypoints).plan(PlanningRequest(depot_id="G1", waypoint_ids=["A", "B", "MISSING", "C"]))

    assert sorted(_stop_ids(result)) == ["A", "B"]
    assert result.warnings == [
        "Waypoint 'MISSING' skipped (not found or no coordinates)",
        "Waypoint 'C' skipped (not found or no coordinates)",
    ]


def test_unknown_waypoint_ids_are_reported_on_multi_route_plans():
    waypoints = _grid(6)
    ids = [w.id for w in waypoints] + ["GONE"]

    result = _planner(waypoints).plan(PlanningRequest(depot_id="G1", waypoint_ids=ids, max_per_route=3))

    assert all(len(route.stops) <= 3 for route in result.routes)
    assert result.summary.total_stops == 6
    assert result.warnings[0] == "Waypoint 'GONE' skipped (not found or no coordinates)"


def test_start_time_and_overtime_warnings():
    waypoints = [_waypoint("A", 13.80, 100.55, work=120)]

    result = _planner(waypoints).plan(
        PlanningRequest(date=DATE, depot_id="G1", start_time="16:30", allow_overtime=False)
    )

    assert result.summary.start_time == "16:30"
    assert result.summary.overtime_stop_count == 1
    assert result.warnings


@pytest.mark.parametrize(
    "request_fields",
    [
        {"depot_id": "G1"},
        {"depot_id": "G1", "date": "02/03/2026"},
        {"depot_id": "", "date": DATE},
        {"depot_id": "G1; drop table", "date": DATE},
        {"depot_id": "G1", "date": DATE, "max_per_route": 0},
        {"depot_id": "G1", "date": DATE, "max_per_route": 51},
        {"depot_id": "G1", "date": DATE, "start_time": "25:00"},
    ],
)
def test_invalid_requests_are_rejected(request_fields):
    with pytest.raises(ValidationError):
        _planner([_waypoint("A", 13.80, 100.55)]).plan(PlanningRequest(**request_fields))


def test_no_waypoints_is_a_validation_error():
    with pytest.raises(ValidationError):
        _planner([_waypoint("A", 13.80, 100.55)]).plan(PlanningRequest(date="2026-04-01", depot_id="G1"))


def test_unknown_depot():
    with pytest.raises(NotFoundError):
        _planner([_waypoint("A", 13.80, 100.55)]).plan(PlanningRequest(date=DATE, depot_id="G9"))


def test_depot_without_coordinates_is_fatal():
    depot = Depot(id="G1", name="Unmapped garage", latitude=None, longitude=None)

    with pytest.raises(FatalPlanningError):
        _planner([_waypoint("A", 13.80, 100.55)], depots=[depot]).plan(PlanningRequest(date=DATE, depot_id="G1"))


def test_too_many_waypoints_is_fatal(monkeypatch):
    monkeypatch.setattr(settings, "max_waypoints", 2)

    with pytest.raises(FatalPlanningError):
        _planner(_grid(3)).plan(PlanningRequest(date=DATE, depot_id="G1"))


def test_calculate_keeps_the_given_order():
    waypoints = [_waypoint("A", 13.80, 100.55), _waypoint("B", 13.76, 100.51), _waypoint("C", 13.78, 100.53)]

    result = _planner(waypoints).calculate(CalculateRequest(depot_id="G1", waypoint_ids=["C", "X", "A", "B"]))

    assert _stop_ids(result) == ["C", "A", "B"]
    assert result.reasoning is None
    assert any("'X'" in warning for warning in result.warnings)
    assert result.routes[0].stops[0].distance_meters > 0


def test_calculate_requires_known_waypoints():
    with pytest.raises(ValidationError):
        _planner([_waypoint("A", 13.80, 100.55)]).calculate(CalculateRequest(depot_id="G1", waypoint_ids=["X"]))
