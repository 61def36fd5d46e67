from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from fieldroute.data.repository import InMemoryRepository
from fieldroute.errors import JobStateError, NotFoundError, ValidationError
from fieldroute.models.domain import Depot, JobStatus, PlanningJob, Waypoint
from fieldroute.schemas.planning import PlanningRequest
from fieldroute.services.jobs.manager import JobManager, estimate_progress
from fieldroute.services.jobs.store import JOBS_TABLE, InMemoryJobStore, SupabaseJobStore
from fieldroute.services.routing.optimizer import RouteOptimizer
from fieldroute.services.routing.service import RoutePlanner

DATE = "2026-03-02"
REQUEST = PlanningRequest(date=DATE, depot_id="G1")


def _planner() -> RoutePlanner:
    waypoints = [
        Waypoint(id="A", code="A", site_id=None, site_name="Site A", latitude=13.80, longitude=100.55, appointment_date=DATE),
        Waypoint(id="B", code="B", site_id=None, site_name="Site B", latitude=13.76, longitude=100.51, appointment_date=DATE),
    ]
    repository = InMemoryRepository([Depot(id="G1", name="Garage", latitude=13.75, longitude=100.5)], waypoints)
    return RoutePlanner(repository, RouteOptimizer(), rng=np.random.default_rng(0))


class ScheduleRecorder:
    def __init__(self):
        self.tasks = []

    def __call__(self, func, *args):
        self.tasks.append((func, args))

    def run_all(self):
        for func, args in self.tasks:
            func(*args)


class ExplodingPlanner:
    def plan(self, request):
        raise RuntimeError("planner crashed")


def test_in_memory_store_lifecycle():
    store = InMemoryJobStore()
    job_id = store.create(REQUEST, created_by="dispatcher")

    assert store.get(job_id).status is JobStatus.PENDING
    assert store.mark_processing(job_id) is True
    assert store.mark_processing(job_id) is False
    store.mark_failed(job_id, "boom")

    job = store.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error_message == "boom"
    assert job.created_by == "dispatcher"
    assert job.started_at is not None and job.completed_at is not None


def test_terminal_jobs_cannot_change():
    store = InMemoryJobStore()
    job_id = store.create(REQUEST)

    with pytest.raises(JobStateError):
        store.mark_failed(job_id, "not started yet")

    store.mark_processing(job_id)
    store.mark_failed(job_id, "boom")
    with pytest.raises(JobStateError):
        store.mark_failed(job_id, "again")


def test_unknown_job():
    with pytest.raises(NotFoundError):
        InMemoryJobStore().get("missing")


def test_submitted_job_completes():
    store = InMemoryJobStore()
    manager = JobManager(store, _planner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(REQUEST, schedule=schedule)
    pending = manager.poll(job_id)
    schedule.run_all()
    done = manager.poll(job_id)

    assert pending.status == "pending"
    assert pending.progress == 10
    assert done.status == "completed"
    assert done.progress == 100
    assert done.result.summary.total_stops == 2
    assert done.error is None


def test_failed_job_records_error():
    store = InMemoryJobStore()
    manager = JobManager(store, ExplodingPlanner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(REQUEST, schedule=schedule)
    schedule.run_all()
    status = manager.poll(job_id)

    assert status.status == "failed"
    assert status.error == "planner crashed"
    assert status.result is None


class UnreadableJobStore(InMemoryJobStore):
    """Claims jobs but cannot read them back once they are processing."""

    def get(self, job_id):
        job = super().get(job_id)
        if job.status is JobStatus.PROCESSING:
            raise RuntimeError("jobs table unavailable")
        return job


def test_job_that_cannot_be_read_after_claiming_fails():
    store = UnreadableJobStore()
    manager = JobManager(store, _planner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(REQUEST, schedule=schedule)
    schedule.run_all()
    status = manager.poll(job_id)

    assert status.status == "failed"
    assert status.error == "jobs table unavailable"
    assert status.progress == 100


def test_job_result_reports_unknown_waypoint_ids():
    store = InMemoryJobStore()
    manager = JobManager(store, _planner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(PlanningRequest(depot_id="G1", waypoint_ids=["A", "B", "MISSING"]), schedule=schedule)
    schedule.run_all()
    done = manager.poll(job_id)

    assert done.status == "completed"
    assert done.result.summary.total_stops == 2
    assert done.result.warnings == ["Waypoint 'MISSING' skipped (not found or no coordinates)"]


def test_planning_errors_fail_the_job():
    store = InMemoryJobStore()
    manager = JobManager(store, _planner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(PlanningRequest(date="2026-04-01", depot_id="G1"), schedule=schedule)
    schedule.run_all()

    assert manager.poll(job_id).status == "failed"


def test_invalid_request_is_rejected_before_a_job_exists():
    store = InMemoryJobStore()
    manager = JobManager(store, _planner())

    with pytest.raises(ValidationError):
        manager.submit(PlanningRequest(depot_id="G1"), schedule=ScheduleRecorder())
    assert store._jobs == {}


def test_job_runs_once():
    store = InMemoryJobStore()
    manager = JobManager(store, _planner())
    schedule = ScheduleRecorder()

    job_id = manager.submit(REQUEST, schedule=schedule)
    schedule.run_all()
    manager.run(job_id)

    assert manager.poll(job_id).status == "completed"


def test_progress_estimate():
    created = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    job = PlanningJob(id="j", status=JobStatus.PROCESSING, request=REQUEST, created_at=created, started_at=created)

    assert estimate_progress(job, now=created) == 20
    assert estimate_progress(job, now=created + timedelta(seconds=30)) == 55
    assert estimate_progress(job, now=created + timedelta(minutes=5)) == 90

    job.status = JobStatus.COMPLETED
    assert estimate_progress(job) == 100


def test_supabase_store_transitions(fake_supabase):
    store = SupabaseJobStore(fake_supabase)
    job_id = store.create(REQUEST)

    assert fake_supabase.tables[JOBS_TABLE][0]["request_payload"]["depot_id"] == "G1"
    assert store.mark_processing(job_id) is True
    assert store.mark_processing(job_id) is False

    manager = JobManager(store, _planner())
    result = _planner().plan(REQUEST)
    store.mark_completed(job_id, result)

    job = store.get(job_id)
    assert job.status is JobStatus.COMPLETED
    assert job.result == result
    assert manager.poll(job_id).progress == 100
    with pytest.raises(JobStateError):
        store.mark_failed(job_id, "too late")


def test_supabase_store_unknown_job(fake_supabase):
    with pytest.raises(NotFoundError):
        SupabaseJobStore(fake_supabase).mark_processing("missing")
