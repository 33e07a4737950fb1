"""Route construction orchestration service."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Optional, Sequence

from ...config import settings
from ...models.context import RequestContext
from ...models.domain import Location, OptimizedRoute, Timeline, Waypoint
from ...persistence.routes import RouteDraft, RoutePersister, StoredRoute, round_km
from ...schemas.routes import (
    AutoOptimizeRequest,
    AutoRouteResponse,
    ClientTarget,
    OptimizationMetadata,
    OptimizeRouteRequest,
    PaginationModel,
    PruningTrace,
    RemovedWaypoint,
    RouteEndpoints,
    RouteListResponse,
    RouteModel,
    RouteResponse,
    RouteStopModel,
    RouteSummaryModel,
    RouteWarning,
    SkippedClients,
    StoredRouteResponse,
    SuggestedClientModel,
    SuggestRequest,
    SuggestResponse,
)
from ..geospatial import euclidean_degrees, round_half_up
from .corridor import find_prospects, suggest_clients
from .errors import ClientAccessDenied, RouteNotFound
from .optimizer_client import GoogleRoutesClient
from .pruner import prune_to_deadline
from .timeline import LunchBreak, build_timeline

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50

logger = logging.getLogger(__name__)


def _endpoints(payload: RouteEndpoints) -> tuple[Location, Location]:
    start = Location(address=payload.start_address, lat=payload.start_lat, lng=payload.start_lng)
    end = Location(address=payload.end_address, lat=payload.end_lat, lng=payload.end_lng)
    return start, end


def _lunch_break(payload: RouteEndpoints) -> Optional[LunchBreak]:
    if payload.lunch_break_start_time and payload.lunch_break_duration_minutes:
        return LunchBreak(
            start_time=payload.lunch_break_start_time,
            duration_minutes=payload.lunch_break_duration_minutes,
        )
    return None


def _timeline_for(
    route: OptimizedRoute,
    waypoints: Sequence[Waypoint],
    payload: RouteEndpoints,
) -> Timeline:
    start, end = _endpoints(payload)
    return build_timeline(
        route,
        waypoints,
        start=start,
        end=end,
        start_datetime=payload.start_datetime,
        visit_duration_minutes=payload.visit_duration_minutes,
        lunch_break=_lunch_break(payload),
        lunch_break_max_offset_minutes=settings.lunch_break_max_offset_minutes,
    )


def _load_owned_clients(context: RequestContext, client_ids: Sequence[str]) -> list[Waypoint]:
    """Client waypoints in request order; every id must belong to the caller."""
    clients = context.repository.fetch_clients(context.user_id, client_ids)
    by_id = {client.id: client for client in clients}
    missing = [cid for cid in client_ids if cid not in by_id]
    if missing:
        logger.warning(f"User {context.user_id} referenced {len(missing)} unknown or foreign client(s)")
        raise ClientAccessDenied(missing)
    return [Waypoint.from_client(by_id[cid]) for cid in client_ids]


def _response_parts(stored: StoredRoute) -> tuple[RouteModel, list[RouteStopModel]]:
    return RouteModel.from_row(stored.route), [RouteStopModel.from_row(row) for row in stored.stops]


def _opening_hours_warning(names: list[str]) -> RouteWarning:
    return RouteWarning(
        code="OUTSIDE_OPENING_HOURS",
        message=f"{len(names)} client(s) would be reached outside opening hours and were not scheduled",
        details={"clients": names},
    )


def suggest_route_clients(context: RequestContext, payload: SuggestRequest) -> SuggestResponse:
    candidates, source = suggest_clients(
        context.repository,
        context.user_id,
        (payload.start_lat, payload.start_lng),
        (payload.end_lat, payload.end_lng),
        payload.corridor_radius_km,
        payload.max_suggestions,
        existing_client_ids=payload.existing_client_ids,
    )
    return SuggestResponse(
        suggestions=[
            SuggestedClientModel(
                id=c.client.id,
                name=c.client.name,
                address=c.client.address,
                lat=c.client.lat,
                lng=c.client.lng,
                distance_from_route_line=int(round_half_up(c.distance_m)),
                score=c.score,
            )
            for c in candidates
        ],
        source=source,
    )


def create_route(context: RequestContext, payload: OptimizeRouteRequest) -> RouteResponse:
    """Build a route through an explicit target, in given order or optimized."""

    start, end = _endpoints(payload)
    target = payload.target
    if isinstance(target, ClientTarget):
        client_ids = list(dict.fromkeys(target.client_ids))
        waypoints = _load_owned_clients(context, client_ids)
    else:
        waypoints = [
            Waypoint(address=target.address, lat=target.lat, lng=target.lng, name=target.address, is_mandatory=True)
        ]

    optimize = payload.optimization_method == "optimized"
    optimizer = GoogleRoutesClient()
    route = optimizer.compute_route(start, end, waypoints, payload.vehicle_type, optimize=optimize)
    timeline = _timeline_for(route, waypoints, payload)

    warnings: list[RouteWarning] = []
    if timeline.final_arrival > payload.end_datetime:
        late_by = math.ceil((timeline.final_arrival - payload.end_datetime).total_seconds() / 60.0)
        warnings.append(
            RouteWarning(
                code="END_TIME_EXCEEDED",
                message=f"Estimated arrival is {late_by} minute(s) after the requested end time",
                details={
                    "estimated_arrival": timeline.final_arrival.isoformat(),
                    "requested_end_datetime": payload.end_datetime.isoformat(),
                },
            )
        )
    outside_hours = [stop.client_name or stop.address for stop in timeline.excluded_stops]
    if outside_hours:
        warnings.append(_opening_hours_warning(outside_hours))

    metadata = OptimizationMetadata(
        method=payload.optimization_method,
        vehicle_type=payload.vehicle_type,
        waypoint_count=len(waypoints),
        original_order=[w.client_id for w in waypoints],
        optimized_order=route.waypoint_order,
        optimizer_distance_km=round_km(route.distance_meters / 1000.0),
        optimizer_duration_minutes=route.duration_minutes,
        requested_end_datetime=payload.end_datetime,
        clients_outside_opening_hours=outside_hours,
        raw_response=route.raw,
    )
    draft = RouteDraft(
        name=payload.name,
        start=start,
        end=end,
        start_datetime=payload.start_datetime,
        timeline=timeline,
        total_visits=sum(1 for stop in timeline.visit_stops if stop.is_included),
        vehicle_type=payload.vehicle_type,
        optimization_method=payload.optimization_method,
        metadata=metadata,
        lunch_break=_lunch_break(payload),
    )
    stored = RoutePersister(context.repository).save(context.user_id, draft)
    route_model, stops = _response_parts(stored)
    return RouteResponse(route=route_model, stops=stops, metadata=metadata, warnings=warnings)


def create_auto_optimized_route(context: RequestContext, payload: AutoOptimizeRequest) -> AutoRouteResponse:
    """Mandatory destination plus as many corridor prospects as the return deadline allows."""

    start, end = _endpoints(payload)
    destination = payload.mandatory_destination

    mandatory = Waypoint(
        address=destination.address,
        lat=destination.lat,
        lng=destination.lng,
        name=destination.address,
        is_mandatory=True,
    )
    if destination.client_id:
        owned = _load_owned_clients(context, [destination.client_id])[0]
        mandatory = replace(
            owned, address=destination.address, lat=destination.lat, lng=destination.lng, is_mandatory=True
        )

    path = [(start.lat, start.lng), (destination.lat, destination.lng), (end.lat, end.lng)]
    prospects = find_prospects(
        context.repository,
        context.user_id,
        path,
        payload.prospect_search_radius_km,
        exclude_ids=[destination.client_id] if destination.client_id else (),
    )
    prospect_waypoints = [Waypoint.from_client(client) for client in prospects]

    center = ((start.lat + end.lat) / 2.0, (start.lng + end.lng) / 2.0)
    max_waypoints = min(payload.max_clients_per_day, settings.max_waypoints)
    skipped: list[Waypoint] = []
    if len(prospect_waypoints) + 1 > max_waypoints:
        ranked = sorted(prospect_waypoints, key=lambda w: euclidean_degrees(w.lat, w.lng, center[0], center[1]))
        prospect_waypoints, skipped = ranked[: max_waypoints - 1], ranked[max_waypoints - 1:]
        logger.info(f"Keeping {len(prospect_waypoints)} closest prospects; {len(skipped)} over the daily limit")

    waypoints = [mandatory, *prospect_waypoints]
    optimizer = GoogleRoutesClient()

    def run(current: Sequence[Waypoint]) -> tuple[OptimizedRoute, Timeline]:
        route = optimizer.compute_route(start, end, current, payload.vehicle_type, optimize=True)
        return route, _timeline_for(route, current, payload)

    outcome = prune_to_deadline(
        waypoints,
        payload.max_return_time,
        center,
        run,
        max_attempts=settings.max_prune_attempts,
    )
    timeline = outcome.timeline

    prospect_stops = [
        stop for stop in timeline.visit_stops if stop.client_id and stop.client_id != destination.client_id
    ]
    included = sum(1 for stop in prospect_stops if stop.is_included)
    outside_hours = [stop.client_name or stop.address for stop in timeline.excluded_stops]
    removed = [RemovedWaypoint(id=w.id, name=w.name, lat=w.lat, lng=w.lng) for w in outcome.removed]

    not_visited = [w for w in [*skipped, *outcome.removed] if w.id]
    message_parts = []
    if skipped:
        message_parts.append(f"{len(skipped)} prospect(s) skipped over the limit of {max_waypoints} waypoints")
    if outcome.removed:
        message_parts.append(
            f"{len(outcome.removed)} prospect(s) removed to return by {payload.max_return_time.isoformat()}"
        )
    message = "; ".join(message_parts) or None

    warnings: list[RouteWarning] = []
    if skipped:
        warnings.append(
            RouteWarning(code="CLIENTS_SKIPPED", message=message_parts[0], details={"ids": [w.id for w in skipped]})
        )
    if outcome.removed:
        warnings.append(
            RouteWarning(
                code="PROSPECTS_PRUNED",
                message=message_parts[-1],
                details={"ids": [w.id for w in outcome.removed], "attempts": outcome.attempts},
            )
        )
    if outside_hours:
        warnings.append(_opening_hours_warning(outside_hours))

    metadata = OptimizationMetadata(
        method="auto_optimized",
        vehicle_type=payload.vehicle_type,
        waypoint_count=len(outcome.waypoints),
        original_order=[w.client_id for w in outcome.waypoints],
        optimized_order=outcome.route.waypoint_order,
        optimizer_distance_km=round_km(outcome.route.distance_meters / 1000.0),
        optimizer_duration_minutes=outcome.route.duration_minutes,
        search_radius_km=payload.prospect_search_radius_km,
        mandatory_destination=destination,
        prospects_found=len(prospects),
        prospects_included=included,
        prospects_excluded=len(prospect_stops) - included,
        clients_outside_opening_hours=outside_hours,
        skipped_clients=SkippedClients(
            ids=[w.id for w in not_visited],
            count=len(not_visited),
            message=message or "",
        ),
        pruning=PruningTrace(
            attempts=outcome.attempts,
            removed=removed,
            max_return_time=payload.max_return_time,
            final_arrival=timeline.final_arrival,
        ),
        raw_response=outcome.route.raw,
    )
    draft = RouteDraft(
        name=payload.name,
        start=start,
        end=end,
        start_datetime=payload.start_datetime,
        timeline=timeline,
        total_visits=sum(1 for stop in timeline.visit_stops if stop.is_included),
        vehicle_type=payload.vehicle_type,
        optimization_method="optimized",
        metadata=metadata,
        lunch_break=_lunch_break(payload),
    )
    stored = RoutePersister(context.repository).save(context.user_id, draft)
    route_model, stops = _response_parts(stored)
    return AutoRouteResponse(
        route=route_model,
        stops=stops,
        metadata=metadata,
        warnings=warnings,
        prospects_found=len(prospects),
        prospects_included=included,
        prospects_excluded=len(prospect_stops) - included,
        clients_outside_opening_hours=outside_hours,
        removed_prospects=removed,
        time_constraint_met=True,
        message=message,
    )


def get_route(context: RequestContext, route_id: str) -> StoredRouteResponse:
    row = context.repository.fetch_route(context.user_id, route_id)
    if not row:
        raise RouteNotFound(route_id)
    stops = context.repository.fetch_stops(route_id)
    return StoredRouteResponse(
        route=RouteModel.from_row(row),
        stops=[RouteStopModel.from_row(stop) for stop in stops],
        metadata=row.get("optimization_metadata"),
    )


def list_routes(context: RequestContext, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> RouteListResponse:
    page = max(1, page)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))
    offset = (page - 1) * page_size

    rows, total_count = context.repository.list_routes(context.user_id, offset, page_size)
    routes = [
        RouteSummaryModel(
            **RouteModel.from_row(row).model_dump(),
            stop_count=context.repository.count_stops(str(row["id"])),
        )
        for row in rows
    ]
    total_pages = math.ceil(total_count / page_size) if total_count else 0
    return RouteListResponse(
        routes=routes,
        pagination=PaginationModel(
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        ),
    )


def delete_route(context: RequestContext, route_id: str) -> None:
    if not context.repository.fetch_route(context.user_id, route_id):
        raise RouteNotFound(route_id)
    context.repository.delete_route(route_id)
    logger.info(f"Deleted route {route_id} for user {context.user_id}")
