"""Exception hierarchy for the offline tile cache.

Lookup misses are not errors: stores and repositories return None.
"""

from __future__ import annotations


class OfflineTilesError(Exception):
    """Base class for all offline tile cache errors."""


class PlanningError(OfflineTilesError):
    """Raised before any tile I/O when a download cannot be planned."""


class NoIntersectingSourceError(PlanningError):
    """No remote image source covers the requested bounds."""


class NoActiveSourceError(PlanningError):
    """No MOG collection tile source is configured."""


class TileIndexError(PlanningError):
    """A remote source header could not be parsed into a tile index."""


class DownloadError(OfflineTilesError):
    """A tile request failed; tiles written before the failure stay on disk."""


class TransportError(DownloadError):
    """Network or range-request failure."""

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class StorageError(DownloadError):
    """Local write or delete failure."""
