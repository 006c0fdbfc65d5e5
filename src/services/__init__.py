"""Services package - offline area orchestration and cache maintenance."""

from services.cache_reclaimer import CacheReclaimer, ReclaimResult, referenced_tiles
from services.offline_area_repository import OfflineAreaRepository
from services.tile_source_provider import StaticTileSourceProvider, TileSourceProvider

__all__ = [
    'CacheReclaimer',
    'OfflineAreaRepository',
    'ReclaimResult',
    'StaticTileSourceProvider',
    'TileSourceProvider',
    'referenced_tiles',
]
