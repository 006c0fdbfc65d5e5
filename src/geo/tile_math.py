"""Web Mercator / slippy-map tile arithmetic."""

from __future__ import annotations

import math
from collections.abc import Iterator

from domain.models import Bounds, TileCoordinate
from shared.constants import (
    MERCATOR_MAX_LAT_DEG,
    MERCATOR_MAX_SIN,
    TILE_SIZE,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
    XY_EPSILON,
)


def latlng_to_pixel_xy(
    lat_deg: float,
    lng_deg: float,
    zoom: int,
) -> tuple[float, float]:
    """Преобразует WGS84 (lat, lng) в координаты «мира» (пиксели) Web Mercator."""
    siny = math.sin(math.radians(lat_deg))
    siny = min(max(siny, -MERCATOR_MAX_SIN), MERCATOR_MAX_SIN)
    world_size = TILE_SIZE * (2**zoom)
    x = (lng_deg + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * world_size
    y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * world_size
    return x, y


def pixel_xy_to_latlng(x: float, y: float, zoom: int) -> tuple[float, float]:
    """Обратное преобразование: «мировые» пиксели -> WGS84 (lat, lng)."""
    world_size = TILE_SIZE * (2**zoom)
    lng = (x / world_size) * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    merc_y = 0.5 - (y / world_size)
    lat = (
        WORLD_LAT_MAX_DEG
        - WORLD_LNG_SPAN_DEG * math.atan(math.exp(-merc_y * 2 * math.pi)) / math.pi
    )
    return lat, lng


def tile_range(bounds: Bounds, zoom: int) -> tuple[int, int, int, int]:
    """
    Диапазон тайлов, покрывающих bounds на уровне zoom.

    Возвращает (x_min, x_max, y_min, y_max), включительно. Восточный и
    южный края, лежащие точно на границе тайла, соседний тайл не захватывают.
    """
    t = 2**zoom
    north = min(bounds.north, MERCATOR_MAX_LAT_DEG)
    south = max(bounds.south, -MERCATOR_MAX_LAT_DEG)
    x_min_world, y_min_world = latlng_to_pixel_xy(north, bounds.west, zoom)
    x_max_world, y_max_world = latlng_to_pixel_xy(south, bounds.east, zoom)

    x_min = math.floor(x_min_world / float(TILE_SIZE))
    y_min = math.floor(y_min_world / float(TILE_SIZE))
    x_max = math.floor((x_max_world - XY_EPSILON) / float(TILE_SIZE))
    y_max = math.floor((y_max_world - XY_EPSILON) / float(TILE_SIZE))

    # Вырожденный прямоугольник (точка или линия) всё равно даёт один тайл
    x_max = max(x_max, x_min)
    y_max = max(y_max, y_min)

    def _clamp(v: int) -> int:
        return max(0, min(t - 1, v))

    return _clamp(x_min), _clamp(x_max), _clamp(y_min), _clamp(y_max)


def tiles_in_bounds(bounds: Bounds, zoom: int) -> Iterator[TileCoordinate]:
    """Перечисляет тайлы bounds на уровне zoom в порядке строк (y), затем столбцов (x)."""
    x_min, x_max, y_min, y_max = tile_range(bounds, zoom)
    for y in range(y_min, y_max + 1):
        for x in range(x_min, x_max + 1):
            yield TileCoordinate(zoom, x, y)


def tile_bounds(coord: TileCoordinate) -> Bounds:
    """Географический охват тайла."""
    x0 = coord.x * TILE_SIZE
    y0 = coord.y * TILE_SIZE
    north, west = pixel_xy_to_latlng(x0, y0, coord.zoom)
    south, east = pixel_xy_to_latlng(x0 + TILE_SIZE, y0 + TILE_SIZE, coord.zoom)
    return Bounds(south=south, west=west, north=north, east=east)
