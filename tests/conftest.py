from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from types import SimpleNamespace
from typing import Any, Sequence

import pytest

from routemax.models.domain import Client, OptimizedRoute, RouteLeg
from routemax.services.routing.errors import PersistenceError


def make_client(cid: str, lat: float, lng: float, **overrides: Any) -> Client:
    values = {
        "id": cid,
        "name": f"Client {cid}",
        "address": f"{cid} Example Street",
        "lat": lat,
        "lng": lng,
    }
    values.update(overrides)
    return Client(**values)


class FakeAuth:
    def get_user(self, token: str):
        if token != "good-token":
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(id="user-1"))


class FakeRepository:
    """In-memory stand-in for ``SupabaseRouteRepository``."""

    def __init__(self, clients: dict[str, list[Client]] | None = None, rpc_rows: list[dict] | None = None):
        self.clients = clients or {}
        self.rpc_rows = rpc_rows
        self.rpc_calls: list[tuple[str, Any]] = []
        self.rpc_limits: list[int] = []
        self.routes: dict[str, dict] = {}
        self.stops: dict[str, list[dict]] = {}
        self.deleted: list[str] = []
        self.fail_stops = False
        self._inserted = 0
        self.client = SimpleNamespace(auth=FakeAuth())

    def fetch_clients(self, user_id: str, client_ids: Sequence[str]) -> list[Client]:
        wanted = set(client_ids)
        return [c for c in self.clients.get(user_id, []) if c.id in wanted]

    def fetch_active_clients(self, user_id: str) -> list[Client]:
        return [c for c in self.clients.get(user_id, []) if c.is_active]

    def suggest_along_route(self, user_id, start, end, radius_m, max_results):
        self.rpc_calls.append(("route", [start, end]))
        self.rpc_limits.append(max_results)
        if self.rpc_rows is None:
            raise PersistenceError("Failed to query corridor suggestions")
        return deepcopy(self.rpc_rows[:max_results])

    def suggest_along_polyline(self, user_id, points, radius_m, max_results):
        self.rpc_calls.append(("polyline", list(points)))
        self.rpc_limits.append(max_results)
        if self.rpc_rows is None:
            raise PersistenceError("Failed to query polyline suggestions")
        return deepcopy(self.rpc_rows[:max_results])

    def insert_route(self, row: dict) -> dict:
        self._inserted += 1
        route_id = f"route-{self._inserted}"
        stored = dict(row, id=route_id, created_at=datetime(2025, 3, 1, 12, self._inserted).isoformat())
        self.routes[route_id] = stored
        return dict(stored)

    def insert_stops(self, rows: list[dict]) -> list[dict]:
        if self.fail_stops:
            raise PersistenceError("Failed to save route stops")
        stored = [dict(row, id=f"{row['route_id']}-stop-{row['stop_order']}") for row in rows]
        self.stops.setdefault(rows[0]["route_id"], []).extend(stored)
        return [dict(row) for row in stored]

    def delete_route(self, route_id: str) -> None:
        self.stops.pop(route_id, None)
        self.routes.pop(route_id, None)
        self.deleted.append(route_id)

    def fetch_route(self, user_id: str, route_id: str):
        row = self.routes.get(route_id)
        return dict(row) if row and row["user_id"] == user_id else None

    def fetch_stops(self, route_id: str) -> list[dict]:
        return sorted((dict(s) for s in self.stops.get(route_id, [])), key=lambda s: s["stop_order"])

    def list_routes(self, user_id: str, offset: int, limit: int):
        rows = sorted(
            (r for r in self.routes.values() if r["user_id"] == user_id),
            key=lambda r: r["created_at"],
            reverse=True,
        )
        return [dict(r) for r in rows[offset:offset + limit]], len(rows)

    def count_stops(self, route_id: str) -> int:
        return len(self.stops.get(route_id, []))


class FakeOptimizer:
    """Every leg takes ``leg_minutes`` and covers ``leg_km``; visit order is reversed when optimizing."""

    def __init__(self, leg_minutes: float = 30.0, leg_km: float = 10.0):
        self.leg_minutes = leg_minutes
        self.leg_km = leg_km
        self.calls: list[dict[str, Any]] = []

    def compute_route(self, origin, destination, waypoints, travel_mode="driving", *, optimize=True):
        self.calls.append(
            {"ids": [w.id for w in waypoints], "optimize": optimize, "travel_mode": travel_mode}
        )
        count = len(waypoints)
        order = list(reversed(range(count))) if optimize else list(range(count))
        legs = [RouteLeg(distance_meters=self.leg_km * 1000, duration_minutes=self.leg_minutes) for _ in range(count + 1)]
        return OptimizedRoute(
            legs=legs,
            waypoint_order=order,
            distance_meters=self.leg_km * 1000 * (count + 1),
            duration_minutes=self.leg_minutes * (count + 1),
        )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def optimizer(monkeypatch: pytest.MonkeyPatch) -> FakeOptimizer:
    from routemax.services.routing import service as route_service

    fake = FakeOptimizer()
    monkeypatch.setattr(route_service, "GoogleRoutesClient", lambda: fake)
    return fake
