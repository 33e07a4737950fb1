"""Request dependencies: Supabase access and the authenticated caller."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..db import get_supabase_client
from ..models.context import RequestContext
from ..persistence.routes import SupabaseRouteRepository
from ..services.routing.errors import NotConfiguredError

logger = logging.getLogger(__name__)


def get_repository() -> SupabaseRouteRepository:
    client = get_supabase_client()
    if client is None:
        error = NotConfiguredError("Supabase not configured. Set ROUTEMAX_SUPABASE_URL and ROUTEMAX_SUPABASE_KEY.")
        raise HTTPException(status_code=error.status_code, detail=error.to_payload())
    return SupabaseRouteRepository(client)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": message, "code": "UNAUTHORIZED"},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    repository: SupabaseRouteRepository = Depends(get_repository),
) -> str:
    """Resolve the Supabase user behind a ``Bearer`` access token."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Missing bearer token")

    try:
        response = repository.client.auth.get_user(token.strip())
    except Exception as e:
        logger.info(f"Rejected access token: {e}")
        raise _unauthorized("Invalid or expired token") from e

    user = getattr(response, "user", None)
    if user is None or not getattr(user, "id", None):
        raise _unauthorized("Invalid or expired token")
    return str(user.id)


def get_request_context(
    user_id: str = Depends(get_current_user_id),
    repository: SupabaseRouteRepository = Depends(get_repository),
) -> RequestContext:
    return RequestContext(user_id=user_id, repository=repository)
