"""Domain layer - business models and settings."""
from domain.models import (
    Bounds,
    OfflineArea,
    TileCoordinate,
    TileSource,
    ZoomRange,
)
from domain.settings import MogSourceConfig, OfflineSettings

__all__ = [
    'Bounds',
    'MogSourceConfig',
    'OfflineArea',
    'OfflineSettings',
    'TileCoordinate',
    'TileSource',
    'ZoomRange',
]
