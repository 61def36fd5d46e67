"""Shared service instances for the API layer."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..data.repository import InMemoryRepository, PlanningRepository
from ..data.supabase_repository import SupabaseRepository
from ..db.supabase import get_supabase_client
from ..services.assistant.planner import get_route_assistant
from ..services.jobs.manager import JobManager
from ..services.jobs.store import InMemoryJobStore, JobStore, SupabaseJobStore
from ..services.routing.optimizer import RouteOptimizer
from ..services.routing.providers import get_routing_provider
from ..services.routing.service import RoutePlanner

logger = logging.getLogger(__name__)


@lru_cache()
def get_repository() -> PlanningRepository:
    client = get_supabase_client()
    if client is None:
        logger.warning("No database configured, planning against an empty in-memory repository")
        return InMemoryRepository()
    return SupabaseRepository(client)


@lru_cache()
def get_job_store() -> JobStore:
    client = get_supabase_client()
    if client is None:
        return InMemoryJobStore()
    return SupabaseJobStore(client)


@lru_cache()
def get_planner() -> RoutePlanner:
    optimizer = RouteOptimizer(provider=get_routing_provider(), assistant=get_route_assistant())
    return RoutePlanner(get_repository(), optimizer)


@lru_cache()
def get_job_manager() -> JobManager:
    return JobManager(get_job_store(), get_planner())
