"""Geo module - Web Mercator and slippy-map tile arithmetic."""

from .tile_math import (
    latlng_to_pixel_xy,
    pixel_xy_to_latlng,
    tile_bounds,
    tile_range,
    tiles_in_bounds,
)

__all__ = [
    'latlng_to_pixel_xy',
    'pixel_xy_to_latlng',
    'tile_bounds',
    'tile_range',
    'tiles_in_bounds',
]
