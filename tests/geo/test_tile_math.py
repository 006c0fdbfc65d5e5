"""Tests for slippy-map tile arithmetic."""

import pytest

from domain.models import Bounds, TileCoordinate
from geo.tile_math import (
    latlng_to_pixel_xy,
    pixel_xy_to_latlng,
    tile_bounds,
    tile_range,
    tiles_in_bounds,
)
from shared.constants import MERCATOR_MAX_LAT_DEG


class TestProjection:
    def test_origin_is_world_center(self):
        x, y = latlng_to_pixel_xy(0.0, 0.0, 0)
        assert x == pytest.approx(128.0)
        assert y == pytest.approx(128.0)

    def test_round_trip(self):
        x, y = latlng_to_pixel_xy(55.75, 37.62, 12)
        lat, lng = pixel_xy_to_latlng(x, y, 12)
        assert lat == pytest.approx(55.75, abs=1e-9)
        assert lng == pytest.approx(37.62, abs=1e-9)


class TestTilesInBounds:
    def test_world_at_zoom_zero_is_one_tile(self):
        world = Bounds(south=-90, west=-180, north=90, east=180)
        assert list(tiles_in_bounds(world, 0)) == [TileCoordinate(0, 0, 0)]

    def test_world_is_clamped_to_grid(self):
        world = Bounds(south=-90, west=-180, north=90, east=180)
        assert tile_range(world, 2) == (0, 3, 0, 3)
        assert len(list(tiles_in_bounds(world, 2))) == 16

    def test_row_major_order(self):
        bounds = Bounds(south=-10, west=-10, north=10, east=10)
        assert list(tiles_in_bounds(bounds, 1)) == [
            TileCoordinate(1, 0, 0),
            TileCoordinate(1, 1, 0),
            TileCoordinate(1, 0, 1),
            TileCoordinate(1, 1, 1),
        ]

    def test_east_and_south_edges_on_tile_boundary_are_exclusive(self):
        # Восточный край на меридиане 0, южный на экваторе: соседи не захватываются
        bounds = Bounds(south=0, west=-20, north=20, east=0)
        assert list(tiles_in_bounds(bounds, 1)) == [TileCoordinate(1, 0, 0)]

    def test_point_yields_single_tile(self):
        point = Bounds(south=55.75, west=37.62, north=55.75, east=37.62)
        for zoom in (0, 8, 14):
            assert len(list(tiles_in_bounds(point, zoom))) == 1

    def test_polar_bounds_clamped_to_mercator(self):
        polar = Bounds(south=86, west=0, north=90, east=10)
        tiles = list(tiles_in_bounds(polar, 3))
        assert tiles == [TileCoordinate(3, 4, 0)]


class TestTileBounds:
    def test_root_tile_covers_mercator_world(self):
        b = tile_bounds(TileCoordinate(0, 0, 0))
        assert b.west == pytest.approx(-180.0)
        assert b.east == pytest.approx(180.0)
        assert b.north == pytest.approx(MERCATOR_MAX_LAT_DEG, abs=1e-6)
        assert b.south == pytest.approx(-MERCATOR_MAX_LAT_DEG, abs=1e-6)

    @pytest.mark.parametrize(
        'coord',
        [TileCoordinate(1, 1, 0), TileCoordinate(8, 154, 80), TileCoordinate(14, 9903, 5121)],
    )
    def test_footprint_maps_back_to_tile(self, coord):
        inner = tile_bounds(coord).shrink(0.5)
        assert list(tiles_in_bounds(inner, coord.zoom)) == [coord]

    def test_children_lie_within_parent(self):
        parent = tile_bounds(TileCoordinate(3, 4, 2))
        child = tile_bounds(TileCoordinate(4, 9, 5))
        assert parent.west <= child.west and child.east <= parent.east + 1e-9
        assert parent.south <= child.south + 1e-9 and child.north <= parent.north
