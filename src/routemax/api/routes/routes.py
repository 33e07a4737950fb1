"""Route construction endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...models.context import RequestContext
from ...schemas.routes import (
    AutoOptimizeRequest,
    AutoRouteResponse,
    ErrorPayload,
    OptimizeRouteRequest,
    RouteListResponse,
    RouteResponse,
    StoredRouteResponse,
    SuggestRequest,
    SuggestResponse,
)
from ...services.routing import service as route_service
from ...services.routing.errors import RouteMaxError
from ..dependencies import get_request_context

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    code: {"model": ErrorPayload}
    for code in (
        status.HTTP_400_BAD_REQUEST,
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_403_FORBIDDEN,
        status.HTTP_404_NOT_FOUND,
        status.HTTP_429_TOO_MANY_REQUESTS,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        status.HTTP_502_BAD_GATEWAY,
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
}

router = APIRouter(prefix="/routes", tags=["routes"], responses=ERROR_RESPONSES)


def _http_error(exc: RouteMaxError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    return HTTPException(status_code=exc.status_code, detail=exc.to_payload())


def _internal_error(action: str, exc: Exception) -> HTTPException:
    logger.exception(f"Error {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": f"Failed {action}", "code": "INTERNAL_ERROR"},
    )


@router.post("/suggest", response_model=SuggestResponse, status_code=status.HTTP_200_OK)
def suggest(payload: SuggestRequest, context: RequestContext = Depends(get_request_context)) -> SuggestResponse:
    """Clients within the corridor around a start-end segment, best score first."""
    try:
        return route_service.suggest_route_clients(context, payload)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("suggesting clients", exc) from exc


@router.post("/optimize", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
def optimize(payload: OptimizeRouteRequest, context: RequestContext = Depends(get_request_context)) -> RouteResponse:
    try:
        return route_service.create_route(context, payload)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("optimizing route", exc) from exc


@router.post("/auto-optimize", response_model=AutoRouteResponse, status_code=status.HTTP_201_CREATED)
def auto_optimize(
    payload: AutoOptimizeRequest,
    context: RequestContext = Depends(get_request_context),
) -> AutoRouteResponse:
    """Route to a mandatory destination, filled with prospects that still allow the return deadline."""
    try:
        return route_service.create_auto_optimized_route(context, payload)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("auto-optimizing route", exc) from exc


@router.get("", response_model=RouteListResponse, status_code=status.HTTP_200_OK)
def list_routes(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=route_service.DEFAULT_PAGE_SIZE, ge=1, le=route_service.MAX_PAGE_SIZE),
    context: RequestContext = Depends(get_request_context),
) -> RouteListResponse:
    try:
        return route_service.list_routes(context, page=page, page_size=page_size)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("listing routes", exc) from exc


@router.get("/{route_id}", response_model=StoredRouteResponse, status_code=status.HTTP_200_OK)
def get_route(route_id: str, context: RequestContext = Depends(get_request_context)) -> StoredRouteResponse:
    try:
        return route_service.get_route(context, route_id)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("loading route", exc) from exc


@router.delete("/{route_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_route(route_id: str, context: RequestContext = Depends(get_request_context)) -> Response:
    try:
        route_service.delete_route(context, route_id)
    except RouteMaxError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:
        raise _internal_error("deleting route", exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
