import httpx

from fieldroute.errors import ProviderError
from fieldroute.models.domain import Depot, Leg, Waypoint
from fieldroute.services.assistant.client import ChatCompletionsClient
from fieldroute.services.assistant.planner import AssistantOrdering, RouteAssistant
from fieldroute.services.routing.optimizer import RouteOptimizer, estimate_legs, greedy_order
from fieldroute.services.routing.providers import ProviderOrdering

DEPOT = Depot(id="G1", name="Main garage", latitude=13.75, longitude=100.5)


def _waypoint(wid: str, lat: float, lon: float, start: str | None = None, work: int = 30) -> Waypoint:
    return Waypoint(
        id=wid,
        code=wid,
        site_id=None,
        site_name=f"Site {wid}",
        latitude=lat,
        longitude=lon,
        appointment_start=start,
        work_duration_minutes=work,
    )


class DummyProvider:
    name = "Dummy"

    def optimize_order(self, origin, points):
        order = list(reversed(range(len(points))))
        return ProviderOrdering(order=order, legs=[Leg(2000, 4) for _ in points])

    def legs_for_fixed_order(self, origin, points):
        return [Leg(2000, 4) for _ in points]


class FailingProvider(DummyProvider):
    def optimize_order(self, origin, points):
        raise ProviderError("routing service down")

    def legs_for_fixed_order(self, origin, points):
        raise ProviderError("routing service down")


class DummyAssistant:
    def __init__(self, order=None):
        self.order = order

    def plan_order(self, waypoints, depot, start_time):
        if self.order is None:
            raise ProviderError("model unavailable")
        return AssistantOrdering(order=self.order, reasoning="Assistant order")


def test_greedy_visits_nearest_first():
    waypoints = [_waypoint("far", 13.95, 100.5), _waypoint("near", 13.76, 100.5), _waypoint("mid", 13.85, 100.5)]

    assert greedy_order(waypoints, DEPOT, "08:00") == [1, 2, 0]


def test_greedy_skips_stops_it_would_reach_too_late():
    waypoints = [
        _waypoint("missed", 13.76, 100.5, start="07:00"),
        _waypoint("open", 13.85, 100.5),
    ]

    assert greedy_order(waypoints, DEPOT, "08:00") == [1, 0]


def test_greedy_midnight_appointment_is_not_treated_as_missing():
    waypoints = [_waypoint("A", 14.5, 100.5, start="00:00"), _waypoint("B", 14.6, 100.5, start="00:30")]

    assert greedy_order(waypoints, DEPOT, "08:00") == [0, 1]


def test_estimated_legs_chain_from_depot():
    waypoints = [_waypoint("A", 13.80, 100.5), _waypoint("B", 13.85, 100.5)]

    legs = estimate_legs(DEPOT, waypoints)

    assert len(legs) == 2
    assert all(leg.distance_meters > 0 and leg.duration_minutes > 0 for leg in legs)


def test_fallback_without_provider_or_assistant_is_deterministic():
    waypoints = [_waypoint(f"W{i}", 13.75 + (i * 7 % 5) * 0.02, 100.5 + (i * 3 % 4) * 0.02) for i in range(8)]
    optimizer = RouteOptimizer()

    first = optimizer.optimize(waypoints, DEPOT, "08:00")
    second = optimizer.optimize(waypoints, DEPOT, "08:00")

    assert first.source == "fallback"
    assert sorted(first.order) == list(range(8))
    assert first.order == second.order
    assert len(first.legs) == 8
    assert "Greedy" in first.reasoning


def test_provider_used_when_assistant_fails():
    waypoints = [_waypoint("A", 13.80, 100.5), _waypoint("B", 13.85, 100.5)]

    result = RouteOptimizer(provider=DummyProvider(), assistant=DummyAssistant()).optimize(waypoints, DEPOT, "08:00")

    assert result.source == "provider"
    assert result.order == [1, 0]
    assert result.reasoning == "Ordered by Dummy (assistant unavailable)"


def test_provider_failure_falls_back_to_greedy():
    waypoints = [_waypoint("A", 13.85, 100.5), _waypoint("B", 13.80, 100.5)]

    result = RouteOptimizer(provider=FailingProvider()).optimize(waypoints, DEPOT, "08:00")

    assert result.source == "fallback"
    assert result.order == [1, 0]
    assert result.legs == estimate_legs(DEPOT, [waypoints[1], waypoints[0]])


def test_assistant_order_gets_provider_legs():
    waypoints = [_waypoint("A", 13.80, 100.5), _waypoint("B", 13.85, 100.5)]

    result = RouteOptimizer(provider=DummyProvider(), assistant=DummyAssistant([0, 1])).optimize(waypoints, DEPOT, "08:00")

    assert result.source == "assistant"
    assert result.order == [0, 1]
    assert result.legs == [Leg(2000, 4), Leg(2000, 4)]
    assert result.reasoning == "Assistant order"


def test_empty_group():
    result = RouteOptimizer().optimize([], DEPOT, "08:00")

    assert result.order == []
    assert result.legs == []


def _chat_assistant(message: dict) -> RouteAssistant:
    body = {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "test-model",
        "choices": [{"index": 0, "finish_reason": "tool_calls", "message": {"role": "assistant", **message}}],
    }
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
    client = ChatCompletionsClient(
        api_key="test-key",
        base_url="http://llm.test/v1",
        max_retries=0,
        http_client=httpx.Client(transport=transport),
    )
    return RouteAssistant(client, max_rounds=1)


def test_malformed_assistant_reply_falls_back_to_greedy():
    waypoints = [_waypoint("A", 13.85, 100.5), _waypoint("B", 13.80, 100.5)]
    assistant = _chat_assistant({"content": None, "tool_calls": ["finalize_route"]})

    result = RouteOptimizer(assistant=assistant).optimize(waypoints, DEPOT, "08:00")

    assert result.source == "fallback"
    assert result.order == [1, 0]


def test_assistant_object_arguments_are_used():
    waypoints = [_waypoint("A", 13.80, 100.5), _waypoint("B", 13.85, 100.5)]
    call = {
        "id": "c1",
        "type": "function",
        "function": {"name": "finalize_route", "arguments": {"order": [1, 0], "reasoning": "Far stop first"}},
    }
    assistant = _chat_assistant({"content": None, "tool_calls": [call]})

    result = RouteOptimizer(assistant=assistant).optimize(waypoints, DEPOT, "08:00")

    assert result.source == "assistant"
    assert result.order == [1, 0]
    assert result.reasoning == "Far stop first"
