import math

import pytest

from routemax.services.geospatial import (
    distance_to_path_m,
    euclidean_degrees,
    haversine_km,
    is_valid_coordinate,
    nearest_point_on_path,
    round_half_up,
)

KM_PER_DEGREE = 6371.0 * math.pi / 180.0


def test_haversine_one_degree_of_latitude():
    assert haversine_km(48.0, 2.0, 49.0, 2.0) == pytest.approx(KM_PER_DEGREE)


def test_nearest_point_is_perpendicular_foot_inside_segment():
    lat, lng = nearest_point_on_path(48.87, 2.40, [(48.8566, 2.3522), (48.8566, 2.4522)])
    assert lat == pytest.approx(48.8566)
    assert lng == pytest.approx(2.40)


def test_nearest_point_clamps_to_segment_end():
    lat, lng = nearest_point_on_path(48.8566, 2.60, [(48.8566, 2.3522), (48.8566, 2.4522)])
    assert (lat, lng) == pytest.approx((48.8566, 2.4522))


def test_degenerate_path_uses_the_single_point():
    path = [(48.8566, 2.3522), (48.8566, 2.3522)]
    assert nearest_point_on_path(48.9, 2.4, path) == pytest.approx((48.8566, 2.3522))
    assert distance_to_path_m(48.8566, 2.3522, path) == pytest.approx(0.0)


def test_distance_to_polyline_uses_closest_segment():
    path = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0)]
    # 0.01 degrees east of the second (vertical) segment.
    distance = distance_to_path_m(0.5, 1.01, path)
    assert distance == pytest.approx(haversine_km(0.5, 1.0, 0.5, 1.01) * 1000)


def test_empty_path_rejected():
    with pytest.raises(ValueError):
        nearest_point_on_path(0.0, 0.0, [])


@pytest.mark.parametrize(
    "lat,lng,valid",
    [(0.0, 0.0, True), (90.0, 180.0, True), (90.1, 0.0, False), (0.0, -180.5, False), (float("nan"), 0.0, False)],
)
def test_is_valid_coordinate(lat, lng, valid):
    assert is_valid_coordinate(lat, lng) is valid


def test_euclidean_degrees():
    assert euclidean_degrees(0.0, 0.0, 3.0, 4.0) == pytest.approx(5.0)


@pytest.mark.parametrize(
    "value,digits,expected",
    [(2.5, 0, 3), (3.5, 0, 4), (-2.5, 0, -3), (14.49, 0, 14), (96.5, 0, 97), (3.14159, 2, 3.14), (1.5, 2, 1.5)],
)
def test_round_half_up(value, digits, expected):
    assert round_half_up(value, digits) == pytest.approx(expected)
