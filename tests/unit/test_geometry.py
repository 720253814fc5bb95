"""Tests for the geometry kernel: bounding boxes, polygon centroid/area, point-in-polygon."""

import math

import pytest

from plotlayers.geometry import (
    bbox_around_point,
    bbox_for_area,
    bbox_of_ring,
    buffer_meters,
    distinct_vertex_count,
    haversine_m,
    meters_to_degrees,
    open_ring,
    point_in_feature,
    polygon_area_m2,
    polygon_centroid,
    ring_vertex_average,
)

LISBON_SQUARE = {
    "type": "Polygon",
    "coordinates": [[
        [-9.14, 38.722],
        [-9.139, 38.722],
        [-9.139, 38.723],
        [-9.14, 38.723],
        [-9.14, 38.722],
    ]],
}


class TestMetersToDegrees:
    def test_latitude_degrees_constant(self):
        d_lat, _ = meters_to_degrees(0.0, 111320.0)
        assert d_lat == pytest.approx(1.0)

    def test_longitude_degrees_grow_with_latitude(self):
        _, at_equator = meters_to_degrees(0.0, 1000.0)
        _, at_lisbon = meters_to_degrees(38.7, 1000.0)
        assert at_lisbon > at_equator


class TestBoundingBoxes:
    def test_box_centred_on_point(self):
        bbox = bbox_around_point(-9.1393, 38.7223, 100)
        assert (bbox.min_lng + bbox.max_lng) / 2 == pytest.approx(-9.1393)
        assert (bbox.min_lat + bbox.max_lat) / 2 == pytest.approx(38.7223)
        assert bbox.min_lng < bbox.max_lng
        assert bbox.min_lat < bbox.max_lat

    def test_area_box_grows_with_area(self):
        small = bbox_for_area(38.7223, -9.1393, 100)
        large = bbox_for_area(38.7223, -9.1393, 10000)
        assert large.max_lat - large.min_lat > small.max_lat - small.min_lat
        assert large.max_lng - large.min_lng > small.max_lng - small.min_lng

    def test_area_box_side_matches_area(self):
        bbox = bbox_for_area(0.0, 0.0, 10000)
        side_m = (bbox.max_lat - bbox.min_lat) * 111320.0
        assert side_m == pytest.approx(100.0)

    def test_as_param_order(self):
        bbox = bbox_of_ring([(1.0, 2.0), (3.0, 4.0)])
        assert bbox.as_param() == "1.0,2.0,3.0,4.0"

    def test_bbox_of_empty_ring(self):
        assert bbox_of_ring([]) is None

    def test_buffer_meters(self):
        assert buffer_meters(None) == 100.0
        assert buffer_meters(0) == 100.0
        assert buffer_meters(400) == pytest.approx(10.0)


class TestPolygon:
    def test_centroid_of_square(self):
        centroid = polygon_centroid(LISBON_SQUARE)
        assert centroid.lat == pytest.approx(38.7225)
        assert centroid.lng == pytest.approx(-9.1395)

    def test_centroid_is_vertex_average_not_area_weighted(self):
        """Known approximation: for a C-shaped parcel the centroid lands in the notch."""
        c_shape = {
            "type": "Polygon",
            "coordinates": [[[0, 0], [3, 0], [3, 1], [1, 1], [1, 2], [3, 2], [3, 3], [0, 3], [0, 0]]],
        }
        centroid = polygon_centroid(c_shape)
        assert (centroid.lng, centroid.lat) == (1.75, 1.5)
        assert point_in_feature(centroid.lng, centroid.lat, c_shape) is False

    def test_area_of_square(self):
        area = polygon_area_m2(LISBON_SQUARE, 38.7225)
        assert 8000 < area < 11000

    def test_closing_vertex_removed(self):
        ring = open_ring(LISBON_SQUARE)
        assert len(ring) == 4
        assert distinct_vertex_count(LISBON_SQUARE) == 4

    def test_non_numeric_vertices_ignored(self):
        polygon = {
            "type": "Polygon",
            "coordinates": [[[-9.14, 38.722], ["x", 38.0], [True, 1], [float("nan"), 0], [-9.139, 38.723]]],
        }
        assert open_ring(polygon) == [(-9.14, 38.722), (-9.139, 38.723)]

    def test_degenerate_polygon_area_is_zero(self):
        polygon = {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]}
        assert polygon_area_m2(polygon, 0.0) == 0.0

    @pytest.mark.parametrize("polygon", [None, {}, {"coordinates": []}, {"coordinates": "bad"}])
    def test_malformed_polygon_never_raises(self, polygon):
        assert open_ring(polygon) == []
        assert polygon_centroid(polygon) is None
        assert polygon_area_m2(polygon, 38.0) == 0.0

    def test_vertex_average_of_multipolygon(self):
        multi = {"type": "MultiPolygon", "coordinates": [LISBON_SQUARE["coordinates"]]}
        lng, lat = ring_vertex_average(multi)
        assert lng == pytest.approx(-9.1395)
        assert lat == pytest.approx(38.7225)

    def test_vertex_average_of_point_is_none(self):
        assert ring_vertex_average({"type": "Point", "coordinates": [0, 0]}) is None


class TestPointInFeature:
    def test_inside(self):
        assert point_in_feature(-9.1395, 38.7225, LISBON_SQUARE) is True

    def test_outside(self):
        assert point_in_feature(-9.2, 38.7225, LISBON_SQUARE) is False

    def test_on_boundary_counts_as_inside(self):
        assert point_in_feature(-9.14, 38.7225, LISBON_SQUARE) is True

    def test_missing_geometry(self):
        assert point_in_feature(0, 0, None) is False

    def test_broken_geometry_is_false(self):
        assert point_in_feature(0, 0, {"type": "Polygon", "coordinates": "garbage"}) is False


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_m(38.7, -9.1, 38.7, -9.1) == 0.0

    def test_one_degree_latitude(self):
        assert haversine_m(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)

    def test_symmetric(self):
        assert math.isclose(haversine_m(38.7, -9.1, 40.4, -3.7), haversine_m(40.4, -3.7, 38.7, -9.1))
