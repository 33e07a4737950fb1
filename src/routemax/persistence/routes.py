"""Supabase persistence for clients, routes and route stops."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from ..models.domain import Client, Location, Timeline, TimelineStop
from ..schemas.routes import OptimizationMetadata
from ..services.geospatial import round_half_up
from ..services.routing.errors import PersistenceError
from ..services.routing.timeline import LunchBreak

logger = logging.getLogger(__name__)

CLIENT_COLUMNS = "id, name, address, lat, lng, opening_time, closing_time, is_active"


def round_minutes(value: float) -> int:
    return int(round_half_up(value))


def round_km(value: float) -> float:
    return round_half_up(value, 2)


class SupabaseRouteRepository:
    """Data access for one Supabase project.

    Every query is scoped by ``user_id`` in addition to row-level security.
    Failures surface as ``PersistenceError`` so callers can decide whether a
    degraded path exists.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def _execute(self, query: Any, action: str) -> Any:
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError(f"Failed to {action}") from e

    # Clients

    def fetch_clients(self, user_id: str, client_ids: Sequence[str]) -> list[Client]:
        if not client_ids:
            return []
        query = (
            self.client.table("clients")
            .select(CLIENT_COLUMNS)
            .eq("user_id", user_id)
            .in_("id", list(client_ids))
        )
        response = self._execute(query, "fetch clients")
        return [Client.from_row(row) for row in response.data or []]

    def fetch_active_clients(self, user_id: str) -> list[Client]:
        query = self.client.table("clients").select(CLIENT_COLUMNS).eq("user_id", user_id).eq("is_active", True)
        response = self._execute(query, "fetch active clients")
        return [Client.from_row(row) for row in response.data or []]

    def suggest_along_route(
        self,
        user_id: str,
        start: tuple[float, float],
        end: tuple[float, float],
        radius_m: float,
        max_results: int,
    ) -> list[dict[str, Any]]:
        query = self.client.rpc(
            "suggest_clients_along_route",
            {
                "p_user_id": user_id,
                "p_start_lat": start[0],
                "p_start_lng": start[1],
                "p_end_lat": end[0],
                "p_end_lng": end[1],
                "p_corridor_radius_m": radius_m,
                "p_max_results": max_results,
            },
        )
        return self._execute(query, "query corridor suggestions").data or []

    def suggest_along_polyline(
        self,
        user_id: str,
        points: Sequence[tuple[float, float]],
        radius_m: float,
        max_results: int,
    ) -> list[dict[str, Any]]:
        query = self.client.rpc(
            "suggest_clients_along_polyline",
            {
                "p_user_id": user_id,
                "p_points_json": [{"lat": lat, "lng": lng} for lat, lng in points],
                "p_corridor_radius_m": radius_m,
                "p_max_results": max_results,
            },
        )
        return self._execute(query, "query polyline suggestions").data or []

    # Routes

    def insert_route(self, row: dict[str, Any]) -> dict[str, Any]:
        response = self._execute(self.client.table("routes").insert(row), "save route")
        if not response.data:
            raise PersistenceError("Failed to save route: no row returned")
        return response.data[0]

    def insert_stops(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        response = self._execute(self.client.table("route_stops").insert(rows), "save route stops")
        return response.data or []

    def delete_route(self, route_id: str) -> None:
        self._execute(self.client.table("route_stops").delete().eq("route_id", route_id), "delete route stops")
        self._execute(self.client.table("routes").delete().eq("id", route_id), "delete route")

    def fetch_route(self, user_id: str, route_id: str) -> Optional[dict[str, Any]]:
        query = self.client.table("routes").select("*").eq("id", route_id).eq("user_id", user_id).limit(1)
        rows = self._execute(query, "fetch route").data or []
        return rows[0] if rows else None

    def fetch_stops(self, route_id: str) -> list[dict[str, Any]]:
        query = (
            self.client.table("route_stops")
            .select("*, clients(name)")
            .eq("route_id", route_id)
            .order("stop_order")
        )
        return self._execute(query, "fetch route stops").data or []

    def list_routes(self, user_id: str, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
        query = (
            self.client.table("routes")
            .select("*", count="exact")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
        )
        response = self._execute(query, "fetch routes")
        return response.data or [], response.count or 0

    def count_stops(self, route_id: str) -> int:
        query = self.client.table("route_stops").select("id", count="exact").eq("route_id", route_id)
        return self._execute(query, "count route stops").count or 0


@dataclass(slots=True)
class RouteDraft:
    """A fully computed route waiting to be stored."""

    name: str
    start: Location
    end: Location
    start_datetime: datetime
    timeline: Timeline
    total_visits: int
    vehicle_type: str
    optimization_method: str
    metadata: OptimizationMetadata
    lunch_break: Optional[LunchBreak] = None


@dataclass(slots=True)
class StoredRoute:
    route: dict[str, Any]
    stops: list[dict[str, Any]] = field(default_factory=list)


def build_route_row(user_id: str, draft: RouteDraft) -> dict[str, Any]:
    timeline = draft.timeline
    return {
        "user_id": user_id,
        "name": draft.name,
        "start_address": draft.start.address,
        "start_lat": draft.start.lat,
        "start_lng": draft.start.lng,
        "start_datetime": draft.start_datetime.isoformat(),
        "end_address": draft.end.address,
        "end_lat": draft.end.lat,
        "end_lng": draft.end.lng,
        "end_datetime": timeline.final_arrival.isoformat(),
        "total_distance_km": round_km(timeline.total_distance_km),
        "total_duration_minutes": round_minutes(timeline.total_duration_minutes),
        "total_visits": draft.total_visits,
        "lunch_break_start_time": draft.lunch_break.start_time if draft.lunch_break else None,
        "lunch_break_duration_minutes": (
            round_minutes(draft.lunch_break.duration_minutes) if draft.lunch_break else None
        ),
        "vehicle_type": draft.vehicle_type,
        "optimization_method": draft.optimization_method,
        "optimization_metadata": draft.metadata.model_dump(mode="json", exclude_none=True),
    }


def build_stop_row(route_id: str, stop: TimelineStop) -> dict[str, Any]:
    return {
        "route_id": route_id,
        "client_id": stop.client_id,
        "address": stop.address,
        "lat": stop.lat,
        "lng": stop.lng,
        "stop_order": stop.stop_order,
        "estimated_arrival": stop.estimated_arrival.isoformat(),
        "estimated_departure": stop.estimated_departure.isoformat(),
        "duration_from_previous_minutes": round_minutes(stop.duration_from_previous_minutes),
        "distance_from_previous_km": round_km(stop.distance_from_previous_km),
        "visit_duration_minutes": round_minutes(stop.visit_duration_minutes),
        "is_included": stop.is_included,
        "stop_type": stop.stop_type.value,
    }


class RoutePersister:
    """Writes a route and its stops as one unit.

    The stops go in a single insert after the route row. If that insert fails
    the route row is deleted again, so a route never exists without its stops.
    """

    def __init__(self, repository: SupabaseRouteRepository) -> None:
        self.repository = repository

    def save(self, user_id: str, draft: RouteDraft) -> StoredRoute:
        route_row = self.repository.insert_route(build_route_row(user_id, draft))
        route_id = str(route_row["id"])
        stop_rows = [build_stop_row(route_id, stop) for stop in draft.timeline.stops]

        try:
            stored_stops = self.repository.insert_stops(stop_rows)
        except PersistenceError as exc:
            logger.error(f"Stop insert failed for route {route_id}; removing the route row")
            try:
                self.repository.delete_route(route_id)
            except PersistenceError:
                logger.exception(f"Compensating delete failed; route {route_id} is orphaned")
            raise PersistenceError("Failed to save route stops", details={"route_id": route_id}) from exc

        logger.info(f"Saved route {route_id} with {len(stop_rows)} stops for user {user_id}")
        stored_stops = stored_stops or [dict(row) for row in stop_rows]
        names = {stop.stop_order: stop.client_name for stop in draft.timeline.stops}
        for stop in stored_stops:
            stop.setdefault("client_name", names.get(stop.get("stop_order")))
        return StoredRoute(route=route_row, stops=sorted(stored_stops, key=lambda row: row["stop_order"]))
