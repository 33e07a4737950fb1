"""Health endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, status

from ...config import settings
from ...db import get_supabase_client
from ...services.routing.errors import RouteMaxError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_optimizer_client():
    """Lazy import to avoid startup failures."""
    from ...services.routing.optimizer_client import GoogleRoutesClient
    return GoogleRoutesClient()


@router.get("/health/optimizer", status_code=status.HTTP_200_OK)
def health_optimizer() -> dict:
    """Probe the Google Routes API with a two-point request."""
    if not settings.google_maps_api_key:
        return {"service": "google_routes", "configured": False, "healthy": False}
    try:
        healthy = _get_optimizer_client().check_health()
        return {"service": "google_routes", "configured": True, "healthy": healthy}
    except RouteMaxError as e:
        return {"service": "google_routes", "configured": True, "healthy": False, "error": e.message}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check the Supabase connection and the routes table."""
    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set ROUTEMAX_SUPABASE_URL and ROUTEMAX_SUPABASE_KEY environment variables.",
        }

    try:
        response = supabase.table("routes").select("id", count="exact").limit(1).execute()
    except Exception as exc:
        logger.warning(f"Database health check failed: {exc}")
        return {
            "configured": True,
            "connected": False,
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
    return {
        "configured": True,
        "connected": True,
        "routes_count": response.count or 0,
        "message": "Database connected.",
    }
