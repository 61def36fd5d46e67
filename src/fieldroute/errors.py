"""Planning error types."""

from __future__ import annotations


class PlanningError(Exception):
    """Base class for route planning failures."""


class ValidationError(PlanningError, ValueError):
    """The request was rejected before any computation started."""


class NotFoundError(PlanningError, LookupError):
    """An unknown depot or job id was referenced."""


class ProviderError(PlanningError):
    """A routing or AI provider call failed.

    The optimizer recovers from these locally, they never fail a plan.
    """


class FatalPlanningError(PlanningError):
    """Input data that makes planning impossible (missing coordinates, too many waypoints)."""


class JobStateError(PlanningError):
    """An illegal job status transition was attempted."""
