"""Corridor filtering: find clients within a radius of a route's path."""

from __future__ import annotations

import logging
from typing import Any, Collection, Iterable, Optional, Sequence

from ...config import settings
from ...models.domain import Client, CorridorCandidate
from ..geospatial import distance_to_path_m, is_valid_coordinate, round_half_up
from .errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

Point = tuple[float, float]


def is_loop_route(start: Point, end: Point, tolerance: Optional[float] = None) -> bool:
    """Start and end within ``tolerance`` degrees on both axes (about 11 m by default)."""
    tol = settings.loop_tolerance_degrees if tolerance is None else tolerance
    return abs(start[0] - end[0]) < tol and abs(start[1] - end[1]) < tol


def build_corridor_path(start: Point, end: Point, waypoints: Sequence[Point] = ()) -> list[Point]:
    """Straight segment, or a closed polyline through the waypoints for loop routes."""
    if waypoints and is_loop_route(start, end):
        return [start, *waypoints, start]
    return [start, end]


def corridor_score(distance_m: float, radius_m: float) -> int:
    return int(round_half_up(max(0.0, 100.0 - (distance_m / radius_m) * 100.0)))


def _validate_path(path: Sequence[Point]) -> None:
    if not path:
        raise ValidationError("Corridor path requires at least one point")
    for lat, lng in path:
        if not is_valid_coordinate(lat, lng):
            raise ValidationError(
                "Invalid coordinate in corridor path",
                details={"lat": lat, "lng": lng},
            )


def filter_candidates(
    clients: Iterable[Client],
    path: Sequence[Point],
    radius_km: float,
    max_results: Optional[int] = None,
) -> list[CorridorCandidate]:
    """Score clients by perpendicular distance to the path; drop those beyond the radius."""

    _validate_path(path)
    if not radius_km > 0:
        raise ValidationError("Corridor radius must be positive", details={"radius_km": radius_km})
    radius_m = radius_km * 1000.0

    candidates: list[CorridorCandidate] = []
    for client in clients:
        if not is_valid_coordinate(client.lat, client.lng):
            logger.warning(f"Skipping client {client.id} with invalid coordinates ({client.lat}, {client.lng})")
            continue
        distance = distance_to_path_m(client.lat, client.lng, path)
        if distance > radius_m:
            continue
        candidates.append(CorridorCandidate(client=client, distance_m=distance, score=corridor_score(distance, radius_m)))

    candidates.sort(key=lambda c: (-c.score, c.distance_m, c.client.id))
    if max_results is not None:
        candidates = candidates[:max_results]
    return candidates


def _candidate_from_row(row: dict[str, Any], radius_m: float) -> CorridorCandidate:
    distance = float(row["distance_meters"])
    score = row.get("score")
    return CorridorCandidate(
        client=Client.from_row(row),
        distance_m=distance,
        score=int(round_half_up(float(score))) if score is not None else corridor_score(distance, radius_m),
    )


def query_corridor(
    repository: Any,
    user_id: str,
    path: Sequence[Point],
    radius_km: float,
    max_results: int,
    exclude_ids: Collection[str] = (),
) -> tuple[list[CorridorCandidate], str]:
    """Ask the spatial index first; compute in-process if the RPC is unavailable.

    Clients in ``exclude_ids`` are dropped before the list is cut to
    ``max_results``. Returns the candidates and the source that produced them
    (``spatial_index`` or ``in_process``).
    """
    _validate_path(path)
    radius_m = radius_km * 1000.0
    excluded = set(exclude_ids)
    # The RPC cannot filter by id, so over-fetch by the number excluded.
    limit = max_results + len(excluded)
    try:
        if len(path) == 2:
            rows = repository.suggest_along_route(user_id, path[0], path[1], radius_m, limit)
        else:
            rows = repository.suggest_along_polyline(user_id, path, radius_m, limit)
        candidates = [_candidate_from_row(row, radius_m) for row in rows]
        candidates = [c for c in candidates if c.client.id not in excluded]
        candidates.sort(key=lambda c: (-c.score, c.distance_m, c.client.id))
        return candidates[:max_results], "spatial_index"
    except (PersistenceError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Spatial corridor query failed ({e}); computing corridor in-process")

    clients = [c for c in repository.fetch_active_clients(user_id) if c.id not in excluded]
    return filter_candidates(clients, path, radius_km, max_results), "in_process"


def suggest_clients(
    repository: Any,
    user_id: str,
    start: Point,
    end: Point,
    radius_km: float,
    max_results: int,
    existing_client_ids: Optional[Sequence[str]] = None,
) -> tuple[list[CorridorCandidate], str]:
    """Suggestions for the manual route builder.

    Loop routes with already-selected clients use the closed polyline through
    them; anything else uses the straight start-end segment.
    """
    waypoints: list[Point] = []
    if existing_client_ids and is_loop_route(start, end):
        try:
            existing = repository.fetch_clients(user_id, existing_client_ids)
            by_id = {client.id: client for client in existing}
            waypoints = [(by_id[cid].lat, by_id[cid].lng) for cid in existing_client_ids if cid in by_id]
        except PersistenceError as e:
            logger.warning(f"Could not load existing waypoints ({e}); using straight corridor")

    path = build_corridor_path(start, end, waypoints)
    return query_corridor(
        repository, user_id, path, radius_km, max_results, exclude_ids=existing_client_ids or ()
    )


def find_prospects(
    repository: Any,
    user_id: str,
    path: Sequence[Point],
    radius_km: float,
    max_results: Optional[int] = None,
    exclude_ids: Collection[str] = (),
) -> list[Client]:
    """Active clients along ``path``, with opening hours loaded from the client rows."""

    limit = max_results or settings.max_prospect_candidates
    candidates, source = query_corridor(repository, user_id, path, radius_km, limit, exclude_ids=exclude_ids)
    prospects = [candidate.client for candidate in candidates]

    if source == "spatial_index" and prospects:
        # The RPC rows carry no opening hours.
        try:
            full = {client.id: client for client in repository.fetch_clients(user_id, [p.id for p in prospects])}
            prospects = [full.get(p.id, p) for p in prospects]
        except PersistenceError as e:
            logger.warning(f"Could not load opening hours for prospects ({e}); using defaults")

    logger.info(f"Found {len(prospects)} prospects along route via {source}")
    return prospects
