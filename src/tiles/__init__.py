"""Remote tile pyramid access and local tile storage.

This module provides:
- TileIndex / TileIndexLoader: tile index parsed from a remote MOG header
- SourceCollection: remote sources intersecting an area
- TileRequestPlanner: merged byte-range requests for an area
- TileDownloader: streaming range download with atomic tile writes
"""

from tiles.downloader import TileDownloader
from tiles.index import TileIndex, TileIndexLoader, TileMetadata
from tiles.planner import TileRequest, TileRequestPlanner, merge_tile_requests
from tiles.sources import RemoteImageSource, SourceCollection, default_mog_sources

__all__ = [
    'RemoteImageSource',
    'SourceCollection',
    'TileDownloader',
    'TileIndex',
    'TileIndexLoader',
    'TileMetadata',
    'TileRequest',
    'TileRequestPlanner',
    'default_mog_sources',
    'merge_tile_requests',
]
