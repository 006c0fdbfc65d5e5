"""Shared constants, errors and helpers."""
from shared.errors import (
    DownloadError,
    NoActiveSourceError,
    NoIntersectingSourceError,
    OfflineTilesError,
    PlanningError,
    StorageError,
    TileIndexError,
    TransportError,
)
from shared.progress import ConsoleProgress, SingleLineRenderer

__all__ = [
    'ConsoleProgress',
    'DownloadError',
    'NoActiveSourceError',
    'NoIntersectingSourceError',
    'OfflineTilesError',
    'PlanningError',
    'SingleLineRenderer',
    'StorageError',
    'TileIndexError',
    'TransportError',
]
