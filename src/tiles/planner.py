"""Planning of byte-range requests for the tiles covering an area."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from geo.tile_math import tiles_in_bounds
from shared.constants import MAX_OVER_FETCH_PER_TILE, MAX_REQUEST_BYTES
from shared.errors import NoIntersectingSourceError

if TYPE_CHECKING:
    from domain.models import Bounds, TileCoordinate, ZoomRange
    from tiles.index import TileIndex, TileIndexLoader, TileMetadata
    from tiles.sources import RemoteImageSource, SourceCollection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TileRequest:
    """Один range-запрос к одному удалённому файлу; тайлы упорядочены по смещению."""

    url: str
    tiles: tuple[TileMetadata, ...]

    @property
    def byte_range(self) -> tuple[int, int]:
        """Запрашиваемый полуинтервал [start, end)."""
        return self.tiles[0].offset, max(t.end for t in self.tiles)

    @property
    def total_bytes(self) -> int:
        """Длина объединения диапазонов тайлов (без промежутков и повторов)."""
        total = 0
        covered_end = 0
        for t in self.tiles:
            start = max(t.offset, covered_end)
            if t.end > start:
                total += t.end - start
            covered_end = max(covered_end, t.end)
        return total

    @property
    def coordinates(self) -> list[TileCoordinate]:
        return [t.coordinate for t in self.tiles]


def merge_tile_requests(
    url: str,
    tiles: Iterable[TileMetadata],
    *,
    max_gap: int = MAX_OVER_FETCH_PER_TILE,
    max_request_bytes: int = MAX_REQUEST_BYTES,
) -> list[TileRequest]:
    """
    Group tiles of one blob into as few range requests as practical.

    A tile joins the current request while the gap after the previous tile is
    at most ``max_gap`` and the merged span stays within ``max_request_bytes``.
    Overlapping ranges always satisfy the gap condition.
    """
    ordered = sorted(tiles, key=lambda t: (t.offset, t.byte_count))
    requests: list[TileRequest] = []
    group: list[TileMetadata] = []
    start = end = 0
    for t in ordered:
        if group and t.offset - end <= max_gap and max(end, t.end) - start <= max_request_bytes:
            group.append(t)
            end = max(end, t.end)
            continue
        if group:
            requests.append(TileRequest(url, tuple(group)))
        group = [t]
        start, end = t.offset, t.end
    if group:
        requests.append(TileRequest(url, tuple(group)))
    return requests


class TileRequestPlanner:
    """Выбирает источники для области и строит объединённые range-запросы."""

    def __init__(self, collection: SourceCollection, index_loader: TileIndexLoader):
        self.collection = collection
        self.index_loader = index_loader

    async def build_tile_requests(
        self,
        bounds: Bounds,
        zoom_range: ZoomRange | None = None,
    ) -> list[TileRequest]:
        """
        Plan requests for every indexed tile within bounds × zoom_range.

        Coordinates missing from a sparse index are skipped.

        Raises:
            NoIntersectingSourceError: no source covers bounds (before any I/O),
                or every candidate source turned out to have no imagery.
            TileIndexError, TransportError: a header could not be loaded.
        """
        zoom_range = zoom_range or self.collection.zoom_range
        sources = self.collection.sources_for(bounds)
        if not sources:
            msg = f'No remote imagery source intersects {bounds}'
            raise NoIntersectingSourceError(msg)

        requests: list[TileRequest] = []
        attempted = 0
        resolved = 0
        for source in sources:
            zooms = source.zoom_range.intersect(zoom_range)
            if zooms is None:
                continue
            attempted += 1
            index = await self.index_loader.load(source)
            if index is None:
                continue
            resolved += 1
            requests.extend(self._plan_source(source, index, bounds, zooms))

        if attempted and not resolved:
            msg = f'No remote imagery available within {bounds}'
            raise NoIntersectingSourceError(msg)
        logger.info(
            'Planned %d request(s), %d tile(s), %d byte(s) for %s zoom %d-%d',
            len(requests),
            sum(len(r.tiles) for r in requests),
            sum(r.total_bytes for r in requests),
            bounds,
            zoom_range.min_zoom,
            zoom_range.max_zoom,
        )
        return requests

    @staticmethod
    def _plan_source(
        source: RemoteImageSource,
        index: TileIndex,
        bounds: Bounds,
        zooms: ZoomRange,
    ) -> list[TileRequest]:
        supported = index.zoom_range
        if supported is None:
            return []
        zooms = supported.intersect(zooms)
        if zooms is None:
            return []
        clipped = _clip(bounds, source.bounds)
        if clipped is None:
            return []
        found: list[TileMetadata] = []
        for zoom in zooms.levels():
            for coord in tiles_in_bounds(clipped, zoom):
                meta = index.get(coord)
                if meta is not None:
                    found.append(meta)
        return merge_tile_requests(source.url, found)


def _clip(bounds: Bounds, other: Bounds) -> Bounds | None:
    if not bounds.intersects(other):
        return None
    return type(bounds)(
        south=max(bounds.south, other.south),
        west=max(bounds.west, other.west),
        north=min(bounds.north, other.north),
        east=min(bounds.east, other.east),
    )
