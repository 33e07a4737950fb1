"""Supabase client factory for the route-construction backend."""

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Return the process-wide Supabase client, or None when it cannot be built.

    The service-role key is used so the backend can read ``clients`` and write
    ``routes`` / ``route_stops``; every query still filters by ``user_id``.
    No request is made here, so a reachable database is not guaranteed.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase not configured: set ROUTEMAX_SUPABASE_URL and ROUTEMAX_SUPABASE_KEY")
        return None

    try:
        client = create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logger.error(f"Failed to create Supabase client for {settings.supabase_url}: {e}")
        return None
    logger.info("Supabase client created")
    return client
