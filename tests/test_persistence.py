from datetime import datetime
from types import SimpleNamespace

import pytest

from conftest import FakeRepository
from routemax.models.domain import Location, StopType, Timeline, TimelineStop
from routemax.persistence.routes import (
    RouteDraft,
    RoutePersister,
    SupabaseRouteRepository,
    build_stop_row,
    round_km,
    round_minutes,
)
from routemax.schemas.routes import OptimizationMetadata
from routemax.services.routing.errors import PersistenceError


def _stop(order: int, stop_type: StopType, minute: int, **overrides) -> TimelineStop:
    values = dict(
        address=f"stop {order}",
        lat=48.85,
        lng=2.30 + order / 100,
        stop_order=order,
        estimated_arrival=datetime(2025, 3, 3, 9, minute),
        estimated_departure=datetime(2025, 3, 3, 9, minute),
        duration_from_previous_minutes=14.5,
        distance_from_previous_km=3.14159,
        visit_duration_minutes=0.0,
        is_included=True,
        stop_type=stop_type,
    )
    values.update(overrides)
    return TimelineStop(**values)


def _draft() -> RouteDraft:
    timeline = Timeline(
        stops=[
            _stop(0, StopType.START, 0, duration_from_previous_minutes=0.0, distance_from_previous_km=0.0),
            _stop(1, StopType.CLIENT, 15, client_id="c1", client_name="Client c1", visit_duration_minutes=20.0),
            _stop(2, StopType.END, 50),
        ]
    )
    return RouteDraft(
        name="Tuesday",
        start=Location(address="Depot", lat=48.85, lng=2.30),
        end=Location(address="Depot", lat=48.85, lng=2.30),
        start_datetime=datetime(2025, 3, 3, 9, 0),
        timeline=timeline,
        total_visits=1,
        vehicle_type="driving",
        optimization_method="simple_order",
        metadata=OptimizationMetadata(method="simple_order", waypoint_count=1, original_order=["c1"]),
    )


def test_rounding_helpers():
    assert round_minutes(14.5) == 15
    assert isinstance(round_minutes(14.5), int)
    assert round_km(3.14159) == pytest.approx(3.14)


def test_stop_row_rounds_metrics():
    row = build_stop_row("route-1", _draft().timeline.stops[1])

    assert row["route_id"] == "route-1"
    assert row["duration_from_previous_minutes"] == 15
    assert row["distance_from_previous_km"] == pytest.approx(3.14)
    assert row["visit_duration_minutes"] == 20
    assert row["stop_type"] == "client"
    assert row["estimated_arrival"] == "2025-03-03T09:15:00"


def test_persister_saves_route_and_stops():
    repository = FakeRepository()

    stored = RoutePersister(repository).save("user-1", _draft())

    route_id = stored.route["id"]
    assert repository.routes[route_id]["user_id"] == "user-1"
    assert stored.route["end_datetime"] == "2025-03-03T09:50:00"
    assert stored.route["total_duration_minutes"] == 29
    assert stored.route["total_distance_km"] == pytest.approx(6.28)
    assert stored.route["optimization_metadata"]["method"] == "simple_order"
    assert [s["stop_order"] for s in stored.stops] == [0, 1, 2]
    assert stored.stops[1]["client_name"] == "Client c1"
    assert repository.count_stops(route_id) == 3


def test_failed_stop_insert_removes_the_route():
    repository = FakeRepository()
    repository.fail_stops = True

    with pytest.raises(PersistenceError) as excinfo:
        RoutePersister(repository).save("user-1", _draft())

    assert repository.routes == {}
    assert repository.deleted == [excinfo.value.details["route_id"]]


class FakeQuery:
    """Records the supabase-py builder chain and returns a canned response."""

    def __init__(self, response=None, error: Exception | None = None):
        self.calls: list[tuple] = []
        self.response = response or SimpleNamespace(data=[], count=0)
        self.error = error

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return method

    def execute(self):
        if self.error:
            raise self.error
        return self.response


def test_repository_scopes_client_queries_to_user():
    rows = [{"id": "c1", "name": "Alpha", "address": "1 rue", "lat": 48.8, "lng": 2.3, "opening_time": "08:00:00"}]
    query = FakeQuery(SimpleNamespace(data=rows, count=None))
    supabase = SimpleNamespace(table=lambda name: query)

    clients = SupabaseRouteRepository(supabase).fetch_clients("user-1", ["c1"])

    assert [c.id for c in clients] == ["c1"]
    assert clients[0].opening_time == "08:00:00"
    assert ("eq", ("user_id", "user-1"), {}) in query.calls
    assert ("in_", ("id", ["c1"]), {}) in query.calls


def test_repository_wraps_driver_errors():
    query = FakeQuery(error=RuntimeError("connection refused"))
    supabase = SimpleNamespace(table=lambda name: query)

    with pytest.raises(PersistenceError):
        SupabaseRouteRepository(supabase).fetch_active_clients("user-1")


def test_repository_list_routes_uses_range_and_count():
    query = FakeQuery(SimpleNamespace(data=[{"id": "r1"}], count=11))
    supabase = SimpleNamespace(table=lambda name: query)

    rows, total = SupabaseRouteRepository(supabase).list_routes("user-1", offset=10, limit=10)

    assert rows == [{"id": "r1"}]
    assert total == 11
    assert ("range", (10, 19), {}) in query.calls
