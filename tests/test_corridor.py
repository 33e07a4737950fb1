import math

import pytest

from conftest import FakeRepository, make_client
from routemax.services.routing.corridor import (
    build_corridor_path,
    corridor_score,
    filter_candidates,
    find_prospects,
    is_loop_route,
    query_corridor,
    suggest_clients,
)
from routemax.services.routing.errors import ValidationError

KM_PER_DEGREE = 6371.0 * math.pi / 180.0

PARIS_START = (48.8566, 2.3522)
PARIS_END = (48.8566, 2.4522)


def _north_of_line(cid: str, km: float):
    return make_client(cid, PARIS_START[0] + km / KM_PER_DEGREE, 2.40)


def test_paris_corridor_scores_by_distance():
    clients = [_north_of_line("far", 6.0), _north_of_line("near", 1.0), _north_of_line("edge", 4.0)]

    candidates = filter_candidates(clients, [PARIS_START, PARIS_END], radius_km=5.0)

    assert [c.client.id for c in candidates] == ["near", "edge"]
    assert [c.score for c in candidates] == [80, 20]
    assert candidates[0].distance_m == pytest.approx(1000.0, abs=0.5)


def test_closer_clients_never_score_lower():
    clients = [_north_of_line(f"c{i}", km) for i, km in enumerate([0.2, 0.9, 1.7, 2.5, 3.3, 4.9])]
    candidates = filter_candidates(clients, [PARIS_START, PARIS_END], radius_km=5.0)

    assert [c.client.id for c in candidates] == ["c0", "c1", "c2", "c3", "c4", "c5"]
    scores = [c.score for c in candidates]
    assert scores == sorted(scores, reverse=True)
    assert all(0 <= s <= 100 for s in scores)


def test_max_results_truncates_after_sorting():
    clients = [_north_of_line("b", 2.0), _north_of_line("a", 0.5), _north_of_line("c", 3.0)]
    candidates = filter_candidates(clients, [PARIS_START, PARIS_END], radius_km=5.0, max_results=2)
    assert [c.client.id for c in candidates] == ["a", "b"]


def test_invalid_client_coordinates_are_skipped():
    clients = [make_client("bad", 123.0, 2.40), _north_of_line("ok", 1.0)]
    candidates = filter_candidates(clients, [PARIS_START, PARIS_END], radius_km=5.0)
    assert [c.client.id for c in candidates] == ["ok"]


def test_radius_and_path_are_validated():
    with pytest.raises(ValidationError):
        filter_candidates([], [PARIS_START, PARIS_END], radius_km=0)
    with pytest.raises(ValidationError):
        filter_candidates([], [(95.0, 2.0), PARIS_END], radius_km=5.0)
    with pytest.raises(ValidationError):
        filter_candidates([], [], radius_km=5.0)


def test_corridor_score_bounds():
    assert corridor_score(0.0, 5000.0) == 100
    assert corridor_score(5000.0, 5000.0) == 0
    assert corridor_score(7000.0, 5000.0) == 0


def test_loop_detection_tolerance():
    assert is_loop_route((48.0, 2.0), (48.00005, 2.00005))
    assert not is_loop_route((48.0, 2.0), (48.0002, 2.0))
    assert not is_loop_route((48.0, 2.0), (48.0, 2.0002))


def test_loop_path_runs_through_existing_waypoints():
    start = (48.0, 2.0)
    waypoints = [(48.01, 2.02), (48.03, 2.01)]
    assert build_corridor_path(start, (48.00001, 2.00001), waypoints) == [start, *waypoints, start]
    assert build_corridor_path(start, (48.1, 2.1), waypoints) == [start, (48.1, 2.1)]
    assert build_corridor_path(start, (48.0, 2.0)) == [start, (48.0, 2.0)]


def test_query_uses_spatial_index_rows():
    rows = [
        {"id": "x", "name": "X", "address": "x st", "lat": 48.86, "lng": 2.40, "distance_meters": 2500.0, "score": 50},
        {"id": "y", "name": "Y", "address": "y st", "lat": 48.86, "lng": 2.41, "distance_meters": 500.0},
    ]
    repository = FakeRepository(rpc_rows=rows)

    candidates, source = query_corridor(repository, "user-1", [PARIS_START, PARIS_END], 5.0, 10)

    assert source == "spatial_index"
    assert repository.rpc_calls[0][0] == "route"
    assert [(c.client.id, c.score) for c in candidates] == [("y", 90), ("x", 50)]


def test_query_falls_back_in_process_when_rpc_fails():
    repository = FakeRepository(clients={"user-1": [_north_of_line("near", 1.0)]})

    candidates, source = query_corridor(repository, "user-1", [PARIS_START, PARIS_END], 5.0, 10)

    assert source == "in_process"
    assert [c.client.id for c in candidates] == ["near"]


def test_query_falls_back_on_malformed_rpc_rows():
    repository = FakeRepository(
        clients={"user-1": [_north_of_line("near", 1.0)]},
        rpc_rows=[{"id": "x", "lat": 48.86, "lng": 2.40}],
    )
    candidates, source = query_corridor(repository, "user-1", [PARIS_START, PARIS_END], 5.0, 10)
    assert source == "in_process"
    assert [c.client.id for c in candidates] == ["near"]


def test_in_process_fallback_ignores_inactive_clients():
    inactive = make_client("gone", PARIS_START[0], 2.40, is_active=False)
    repository = FakeRepository(clients={"user-1": [inactive, _north_of_line("near", 1.0)]})
    candidates, _ = query_corridor(repository, "user-1", [PARIS_START, PARIS_END], 5.0, 10)
    assert [c.client.id for c in candidates] == ["near"]


def test_suggest_excludes_clients_already_on_the_route():
    clients = [_north_of_line("near", 1.0), _north_of_line("chosen", 0.5)]
    repository = FakeRepository(clients={"user-1": clients})

    candidates, _ = suggest_clients(
        repository, "user-1", PARIS_START, PARIS_END, 5.0, 20, existing_client_ids=["chosen"]
    )

    assert [c.client.id for c in candidates] == ["near"]
    assert repository.rpc_calls[0][0] == "route"


def test_suggest_on_loop_route_uses_polyline_through_existing_clients():
    home = (48.8566, 2.3522)
    chosen = make_client("chosen", 48.8566, 2.4522)
    along_loop = make_client("along", 48.8566 + 1.0 / KM_PER_DEGREE, 2.40)
    repository = FakeRepository(clients={"user-1": [chosen, along_loop]})

    candidates, source = suggest_clients(
        repository, "user-1", home, home, 5.0, 20, existing_client_ids=["chosen"]
    )

    assert source == "in_process"
    kind, points = repository.rpc_calls[0]
    assert kind == "polyline"
    assert points == [home, (48.8566, 2.4522), home]
    assert [(c.client.id, c.score) for c in candidates] == [("along", 80)]


def test_find_prospects_loads_opening_hours_for_index_rows():
    full = make_client("x", 48.86, 2.40, opening_time="07:00:00", closing_time="19:00:00")
    rows = [{"id": "x", "name": "X", "address": "x st", "lat": 48.86, "lng": 2.40, "distance_meters": 100.0}]
    repository = FakeRepository(clients={"user-1": [full]}, rpc_rows=rows)

    prospects = find_prospects(repository, "user-1", [PARIS_START, (48.86, 2.40), PARIS_END], 5.0)

    assert [(p.id, p.opening_time, p.closing_time) for p in prospects] == [("x", "07:00:00", "19:00:00")]
    assert repository.rpc_calls[0][0] == "polyline"


def test_degenerate_path_scores_by_distance_from_the_single_point():
    clients = [make_client(f"{km}km", PARIS_START[0] + km / KM_PER_DEGREE, PARIS_START[1]) for km in (6, 1, 4)]

    assert build_corridor_path(PARIS_START, PARIS_START) == [PARIS_START, PARIS_START]
    candidates = filter_candidates(clients, [PARIS_START, PARIS_START], radius_km=5.0)

    assert [c.client.id for c in candidates] == ["1km", "4km"]
    assert [c.score for c in candidates] == [80, 20]


def test_corridor_score_rounds_halves_up():
    assert corridor_score(175.0, 5000.0) == 97
    assert corridor_score(125.0, 5000.0) == 98


def test_spatial_index_scores_round_halves_up():
    rows = [{"id": "x", "name": "X", "address": "x st", "lat": 48.86, "lng": 2.40, "distance_meters": 175.0, "score": 96.5}]
    repository = FakeRepository(rpc_rows=rows)

    candidates, _ = query_corridor(repository, "user-1", [PARIS_START, PARIS_END], 5.0, 10)

    assert [c.score for c in candidates] == [97]


def _loop_with_chosen_and_nearby():
    home = (48.8566, 2.3522)
    chosen = [
        make_client("chosen-a", 48.8566, 2.3822),
        make_client("chosen-b", 48.8766, 2.3822),
        make_client("chosen-c", 48.8766, 2.3522),
    ]
    south = home[0] - 2.0 / KM_PER_DEGREE
    nearby = [make_client(f"near-{i}", south, 2.355 + 0.005 * i) for i in range(5)]
    return home, chosen, nearby


def test_loop_suggestions_fill_max_results_after_excluding_existing():
    home, chosen, nearby = _loop_with_chosen_and_nearby()
    repository = FakeRepository(clients={"user-1": chosen + nearby})
    chosen_ids = [c.id for c in chosen]

    candidates, source = suggest_clients(
        repository, "user-1", home, home, 5.0, 3, existing_client_ids=chosen_ids
    )

    assert source == "in_process"
    assert len(candidates) == 3
    assert all(c.client.id.startswith("near-") for c in candidates)


def test_spatial_index_is_over_fetched_by_the_excluded_count():
    rows = [
        {"id": "chosen", "name": "C", "address": "c st", "lat": 48.8566, "lng": 2.40, "distance_meters": 0.0},
        {"id": "y", "name": "Y", "address": "y st", "lat": 48.86, "lng": 2.41, "distance_meters": 500.0},
        {"id": "x", "name": "X", "address": "x st", "lat": 48.86, "lng": 2.40, "distance_meters": 2500.0},
    ]
    repository = FakeRepository(rpc_rows=rows)

    candidates, source = suggest_clients(
        repository, "user-1", PARIS_START, PARIS_END, 5.0, 2, existing_client_ids=["chosen"]
    )

    assert source == "spatial_index"
    assert repository.rpc_limits == [3]
    assert [c.client.id for c in candidates] == ["y", "x"]
