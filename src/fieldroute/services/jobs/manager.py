"""Asynchronous planning: submit, run in the background, poll."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from ...config import settings
from ...errors import JobStateError
from ...models.domain import JobStatus, PlanningJob
from ...schemas.planning import JobStatusResponse, PlanningRequest
from ..routing.service import RoutePlanner, validate_request
from .store import JobStore

logger = logging.getLogger(__name__)

PENDING_PROGRESS = 10
PROCESSING_BASE_PROGRESS = 20
PROCESSING_MAX_PROGRESS = 90
# processing progress reaches its cap after roughly one minute
PROCESSING_RAMP_SECONDS = 60


def estimate_progress(job: PlanningJob, now: Optional[datetime] = None) -> int:
    if job.status.is_terminal:
        return 100
    if job.status is JobStatus.PENDING or job.started_at is None:
        return PENDING_PROGRESS
    now = now or datetime.now(timezone.utc)
    elapsed = max(0.0, (now - job.started_at).total_seconds())
    ramp = math.floor(elapsed / PROCESSING_RAMP_SECONDS * (PROCESSING_MAX_PROGRESS - PROCESSING_BASE_PROGRESS))
    return min(PROCESSING_MAX_PROGRESS, PROCESSING_BASE_PROGRESS + ramp)


class JobManager:
    def __init__(
        self,
        store: JobStore,
        planner: RoutePlanner,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.store = store
        self.planner = planner
        self._executor = executor

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=settings.job_workers, thread_name_prefix="planning-job")
        return self._executor

    def submit(
        self,
        request: PlanningRequest,
        created_by: Optional[str] = None,
        schedule: Callable[[Callable[[str], None], str], None] | None = None,
    ) -> str:
        """Validate the request, record a pending job and dispatch it.

        Validation errors are raised to the caller; no job is created for them.
        `schedule` lets the caller run the job (e.g. FastAPI background tasks).
        """
        validate_request(request)
        job_id = self.store.create(request, created_by)
        logger.info(f"Queued planning job {job_id}")
        if schedule is not None:
            schedule(self.run, job_id)
        else:
            self._get_executor().submit(self.run, job_id)
        return job_id

    def run(self, job_id: str) -> None:
        """Execute one job to a terminal state. Never raises."""
        try:
            claimed = self.store.mark_processing(job_id)
        except Exception:
            logger.exception(f"Could not start job {job_id}")
            return
        if not claimed:
            logger.info(f"Job {job_id} already claimed, skipping")
            return

        # claimed jobs always reach a terminal state from here on
        try:
            job = self.store.get(job_id)
            result = self.planner.plan(job.request)
        except Exception as exc:
            logger.exception(f"Job {job_id} failed: {exc}")
            self._fail(job_id, str(exc) or exc.__class__.__name__)
            return

        try:
            self.store.mark_completed(job_id, result)
            logger.info(f"Job {job_id} completed with {len(result.routes)} route(s)")
        except JobStateError:
            logger.exception(f"Job {job_id} could not be completed")
        except Exception as exc:
            logger.exception(f"Storing result for job {job_id} failed")
            self._fail(job_id, f"Failed to store result: {exc}")

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self.store.mark_failed(job_id, message)
        except Exception:
            logger.exception(f"Could not mark job {job_id} as failed")

    def poll(self, job_id: str) -> JobStatusResponse:
        job = self.store.get(job_id)
        return JobStatusResponse(
            job_id=job.id,
            status=job.status.value,
            progress=estimate_progress(job),
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            result=job.result if job.status is JobStatus.COMPLETED else None,
            error=job.error_message if job.status is JobStatus.FAILED else None,
        )

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
