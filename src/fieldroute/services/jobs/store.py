"""Persistence for asynchronous planning jobs."""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from supabase import Client

from ...errors import JobStateError, NotFoundError
from ...models.domain import JobStatus, PlanningJob
from ...schemas.planning import PlanningRequest, PlanningResult

logger = logging.getLogger(__name__)

JOBS_TABLE = "main_route_optimization_jobs"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    """Job records. Status only moves pending -> processing -> completed | failed."""

    @abstractmethod
    def create(self, request: PlanningRequest, created_by: Optional[str] = None) -> str:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> PlanningJob:
        """Return the job or raise NotFoundError."""
        raise NotImplementedError

    @abstractmethod
    def mark_processing(self, job_id: str) -> bool:
        """Claim a pending job. False when another worker already claimed it."""
        raise NotImplementedError

    @abstractmethod
    def mark_completed(self, job_id: str, result: PlanningResult) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_failed(self, job_id: str, error_message: str) -> None:
        raise NotImplementedError


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: Dict[str, PlanningJob] = {}
        self._lock = threading.Lock()

    def create(self, request: PlanningRequest, created_by: Optional[str] = None) -> str:
        job_id = str(uuid.uuid4())
        job = PlanningJob(id=job_id, status=JobStatus.PENDING, request=request, created_at=_now(), created_by=created_by)
        with self._lock:
            self._jobs[job_id] = job
        return job_id

    def get(self, job_id: str) -> PlanningJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job '{job_id}' not found")
            return replace(job)

    def _require(self, job_id: str) -> PlanningJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job '{job_id}' not found")
        return job

    def mark_processing(self, job_id: str) -> bool:
        with self._lock:
            job = self._require(job_id)
            if job.status is not JobStatus.PENDING:
                return False
            job.status = JobStatus.PROCESSING
            job.started_at = _now()
            return True

    def _finish(self, job_id: str, status: JobStatus, **fields) -> None:
        with self._lock:
            job = self._require(job_id)
            if not job.status.can_transition_to(status):
                raise JobStateError(f"Job '{job_id}' cannot move from {job.status.value} to {status.value}")
            job.status = status
            job.completed_at = _now()
            for name, value in fields.items():
                setattr(job, name, value)

    def mark_completed(self, job_id: str, result: PlanningResult) -> None:
        self._finish(job_id, JobStatus.COMPLETED, result=result)

    def mark_failed(self, job_id: str, error_message: str) -> None:
        self._finish(job_id, JobStatus.FAILED, error_message=error_message)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def row_to_job(row: dict) -> PlanningJob:
    result = row.get("result_payload")
    return PlanningJob(
        id=row["id"],
        status=JobStatus(row["status"]),
        request=PlanningRequest.model_validate(row.get("request_payload") or {}),
        created_at=_parse_timestamp(row.get("created_at")) or _now(),
        result=PlanningResult.model_validate(result) if result else None,
        error_message=row.get("error_message"),
        created_by=row.get("created_by"),
        started_at=_parse_timestamp(row.get("started_at")),
        completed_at=_parse_timestamp(row.get("completed_at")),
    )


class SupabaseJobStore(JobStore):
    """Jobs in the route optimization jobs table; transitions are conditional updates."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def create(self, request: PlanningRequest, created_by: Optional[str] = None) -> str:
        job_id = str(uuid.uuid4())
        self.client.table(JOBS_TABLE).insert(
            {
                "id": job_id,
                "status": JobStatus.PENDING.value,
                "request_payload": request.model_dump(mode="json"),
                "created_by": created_by,
                "created_at": _now().isoformat(),
            }
        ).execute()
        logger.info(f"Created planning job {job_id}")
        return job_id

    def get(self, job_id: str) -> PlanningJob:
        result = self.client.table(JOBS_TABLE).select("*").eq("id", job_id).limit(1).execute()
        if not result.data:
            raise NotFoundError(f"Job '{job_id}' not found")
        return row_to_job(result.data[0])

    def _transition(self, job_id: str, current: JobStatus, values: dict) -> bool:
        result = (
            self.client.table(JOBS_TABLE)
            .update(values)
            .eq("id", job_id)
            .eq("status", current.value)
            .execute()
        )
        return bool(result.data)

    def mark_processing(self, job_id: str) -> bool:
        claimed = self._transition(
            job_id,
            JobStatus.PENDING,
            {"status": JobStatus.PROCESSING.value, "started_at": _now().isoformat()},
        )
        if not claimed:
            # distinguish an unknown id from a lost race
            self.get(job_id)
        return claimed

    def _finish(self, job_id: str, status: JobStatus, values: dict) -> None:
        values = {"status": status.value, "completed_at": _now().isoformat(), **values}
        if not self._transition(job_id, JobStatus.PROCESSING, values):
            job = self.get(job_id)
            raise JobStateError(f"Job '{job_id}' cannot move from {job.status.value} to {status.value}")

    def mark_completed(self, job_id: str, result: PlanningResult) -> None:
        self._finish(job_id, JobStatus.COMPLETED, {"result_payload": result.model_dump(mode="json")})

    def mark_failed(self, job_id: str, error_message: str) -> None:
        self._finish(job_id, JobStatus.FAILED, {"error_message": error_message})
