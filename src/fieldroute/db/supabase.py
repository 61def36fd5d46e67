"""Shared Supabase client for the depot, ticket and job tables."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Client built from FIELDROUTE_SUPABASE_URL / FIELDROUTE_SUPABASE_KEY.

    None when either is missing or the client cannot be built; callers then plan
    against in-memory repositories and job stores. No query is issued here.
    """
    if not (settings.supabase_url and settings.supabase_key):
        logger.warning("Supabase is not configured, planning data and jobs stay in memory")
        return None

    try:
        client = create_client(settings.supabase_url, settings.supabase_key)
    except Exception as exc:
        logger.error(f"Could not create Supabase client for {settings.supabase_url}: {exc}")
        return None
    logger.info("Supabase client ready")
    return client
