"""Tool-calling route assistant: asks a chat model for a visiting order."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from openai.types.chat import ChatCompletionMessage

from ...config import settings
from ...errors import ProviderError
from ...models.domain import Depot, TimeSuggestion, Waypoint
from .client import ChatCompletionsClient
from .tools import ROUTE_TOOLS, ToolCall, ToolContext, parse_tool_call

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a route planning expert for field-service technicians.

1. Study the location, appointment time, and work duration of every stop.
2. Find the best visiting order, considering:
   - travel distance (avoid doubling back)
   - appointment times (do not arrive late)
   - work duration at each stop
3. If an appointment time forces a poor route, suggest a new time the customer could be asked for.

Tools:
- calculate_distance: distance between two stops
- check_time_feasibility: whether an arrival time meets the appointment
- simulate_route: simulate a whole order
- suggest_time_change: propose a new appointment time (only when needed)
- finalize_route: confirm the final order

Always finish by calling finalize_route with every stop index exactly once."""


@dataclass(slots=True)
class AssistantOrdering:
    order: List[int]
    reasoning: str
    suggestions: List[TimeSuggestion] = field(default_factory=list)


def _describe_stops(waypoints: Sequence[Waypoint]) -> str:
    lines = []
    for index, waypoint in enumerate(waypoints):
        appointment = waypoint.appointment_start or "none"
        lines.append(
            f"{index}. {waypoint.site_name} | appointment: {appointment} | "
            f"work: {waypoint.work_duration_minutes} min | "
            f"location: ({waypoint.latitude:.4f}, {waypoint.longitude:.4f})"
        )
    return "\n".join(lines)


def build_user_prompt(waypoints: Sequence[Waypoint], depot: Depot, start_time: str) -> str:
    return (
        f"Start (garage): ({depot.latitude:.4f}, {depot.longitude:.4f})\n"
        f"Start time: {start_time}\n\n"
        f"Stops to visit ({len(waypoints)}):\n{_describe_stops(waypoints)}\n\n"
        "Find the best visiting order. If some appointment times force the route to double back, "
        "suggest new times to discuss with the customer."
    )


def read_tool_calls(message: ChatCompletionMessage) -> List[Tuple[str, ToolCall]]:
    """(call id, typed call) pairs of an assistant message.

    Raises ProviderError when any entry is not a well-formed function call.
    """
    tool_calls = message.tool_calls or []
    if not isinstance(tool_calls, list):
        raise ProviderError("Assistant sent tool calls that are not a list")

    requested: list[tuple[str, ToolCall]] = []
    for raw_call in tool_calls:
        function = getattr(raw_call, "function", None)
        name = getattr(function, "name", None)
        if not isinstance(name, str):
            raise ProviderError(f"Assistant sent a malformed tool call: {raw_call!r}")
        call_id = getattr(raw_call, "id", None)
        call = parse_tool_call(name, getattr(function, "arguments", None))
        requested.append((call_id if isinstance(call_id, str) else "", call))
    return requested


def _echo(message: ChatCompletionMessage, requested: Sequence[Tuple[str, ToolCall]]) -> dict:
    """The assistant turn as it is sent back, with arguments re-serialized from the parsed calls."""
    return {
        "role": "assistant",
        "content": message.content if isinstance(message.content, str) else None,
        "tool_calls": [
            {
                "id": call_id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.model_dump_json(exclude={"name"})},
            }
            for call_id, call in requested
        ],
    }


class RouteAssistant:
    def __init__(self, client: ChatCompletionsClient, max_rounds: int | None = None) -> None:
        self.client = client
        self.max_rounds = max_rounds or settings.assistant_max_rounds

    def plan_order(self, waypoints: Sequence[Waypoint], depot: Depot, start_time: str) -> AssistantOrdering:
        """Run the tool loop until the model finalizes a permutation of the stops.

        Raises ProviderError when the model fails, stops answering, exceeds the round
        budget, or finalizes something that is not a permutation.
        """
        context = ToolContext(waypoints=waypoints, depot=depot)
        messages: list[dict] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(waypoints, depot, start_time)},
        ]

        final_order: Optional[List[int]] = None
        reasoning = ""
        for round_number in range(1, self.max_rounds + 1):
            message = self.client.complete(messages, ROUTE_TOOLS)
            requested = read_tool_calls(message)
            if not requested:
                logger.info(f"Assistant stopped calling tools after {round_number} rounds without finalizing")
                break

            messages.append(_echo(message, requested))
            for call_id, call in requested:
                logger.debug(f"Assistant tool call: {call!r}")
                outcome = context.execute(call)
                messages.append({"role": "tool", "tool_call_id": call_id, "content": json.dumps(outcome.result)})
                if outcome.final_order is not None:
                    final_order = outcome.final_order
                    reasoning = outcome.reasoning

            if final_order is not None:
                break

        if final_order is None:
            raise ProviderError("Assistant did not finalize a route")
        if sorted(final_order) != list(range(len(waypoints))):
            raise ProviderError(f"Assistant finalized an invalid order {final_order}")
        return AssistantOrdering(order=final_order, reasoning=reasoning, suggestions=list(context.suggestions))


def get_route_assistant() -> RouteAssistant | None:
    """Assistant backed by the configured chat model, or None when no key is set."""
    if not settings.openai_api_key:
        return None
    return RouteAssistant(ChatCompletionsClient())
