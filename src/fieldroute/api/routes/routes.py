"""Routing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from ...config import settings
from ...errors import FatalPlanningError, NotFoundError, ValidationError
from ...schemas.planning import (
    CalculateRequest,
    JobStatusResponse,
    JobSubmitResponse,
    PlanningRequest,
    PlanningResult,
)
from ...services.jobs.manager import JobManager
from ...services.routing.service import RoutePlanner
from ..dependencies import get_job_manager, get_planner

router = APIRouter(prefix="/routes", tags=["routes"])

logger = logging.getLogger(__name__)


def _http_error(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, FatalPlanningError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    logger.exception(f"Error while trying to {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(exc)}",
    )


@router.post("/optimize", response_model=PlanningResult, status_code=status.HTTP_200_OK)
def optimize(payload: PlanningRequest, planner: RoutePlanner = Depends(get_planner)) -> PlanningResult:
    try:
        return planner.plan(payload)
    except Exception as exc:
        raise _http_error(exc, "optimize routes") from exc


@router.post("/optimize/async", response_model=JobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
def optimize_async(
    payload: PlanningRequest,
    background_tasks: BackgroundTasks,
    manager: JobManager = Depends(get_job_manager),
) -> JobSubmitResponse:
    """Queue a planning job and return where to poll for it."""
    try:
        job_id = manager.submit(payload, schedule=background_tasks.add_task)
    except Exception as exc:
        raise _http_error(exc, "queue route optimization") from exc
    return JobSubmitResponse(job_id=job_id, poll_url=f"{settings.api_prefix}/routes/jobs/{job_id}")


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, status_code=status.HTTP_200_OK)
def job_status(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobStatusResponse:
    try:
        return manager.poll(job_id)
    except Exception as exc:
        raise _http_error(exc, "read job status") from exc


@router.post("/calculate", response_model=PlanningResult, status_code=status.HTTP_200_OK)
def calculate(payload: CalculateRequest, planner: RoutePlanner = Depends(get_planner)) -> PlanningResult:
    """Timing for stops in the order given, without re-ordering them."""
    try:
        return planner.calculate(payload)
    except Exception as exc:
        raise _http_error(exc, "calculate route") from exc
