"""Offline area repository - orchestrates planning, download, naming and reclamation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from domain.models import Bounds, OfflineArea, TileSource, ZoomRange
from services.cache_reclaimer import CacheReclaimer, ReclaimResult
from shared.constants import (
    AREA_NAME_SENSITIVITY,
    UNNAMED_AREA_NAME,
    OfflineAreaState,
    TileSourceType,
)
from shared.errors import NoActiveSourceError, NoIntersectingSourceError
from tiles.downloader import TileDownloader
from tiles.planner import TileRequest, TileRequestPlanner
from tiles.sources import SourceCollection
from tiles.storage import local_tile_url, tile_path

if TYPE_CHECKING:
    import aiohttp

    from domain.settings import MogSourceConfig
    from infrastructure.geocoding import AreaNameResolver
    from persistence.area_store import OfflineAreaStore
    from services.tile_source_provider import TileSourceProvider
    from tiles.index import TileIndexLoader

logger = logging.getLogger(__name__)


def _new_area_id() -> str:
    return str(uuid.uuid4())


class OfflineAreaRepository:
    """Main entry point for offline area operations."""

    def __init__(
        self,
        store: OfflineAreaStore,
        tile_sources: TileSourceProvider,
        *,
        tiles_root: str | Path,
        index_loader: TileIndexLoader,
        session: aiohttp.ClientSession,
        geocoder: AreaNameResolver | None = None,
        mog_sources: Sequence[MogSourceConfig] | None = None,
        id_factory: Callable[[], str] = _new_area_id,
    ) -> None:
        """
        Initialize repository.

        Args:
            store: Offline area index
            tile_sources: Provider of the active project's tile sources
            tiles_root: Root directory of the local tile pool
            index_loader: Loader (and cache) of remote tile indexes
            session: HTTP session for tile payload range reads
            geocoder: Area name resolver; None leaves areas unnamed
            mog_sources: Explicit remote layout overriding the default one
            id_factory: Generator of new area ids

        """
        self.store = store
        self.tile_sources = tile_sources
        self.tiles_root = Path(tiles_root)
        self.index_loader = index_loader
        self._session = session
        self._geocoder = geocoder
        self._mog_sources = list(mog_sources) if mog_sources else None
        self._id_factory = id_factory
        self.reclaimer = CacheReclaimer(store, self.tiles_root)

    # --- queries ---

    def offline_areas(self) -> AsyncIterator[list[OfflineArea]]:
        """All offline areas, re-emitted whenever the store changes."""
        return self.store.observe_all()

    def get_offline_area(self, area_id: str) -> OfflineArea | None:
        return self.store.get(area_id)

    # --- planning ---

    def _source_collection(self) -> SourceCollection:
        """Коллекция по первому MOG-источнику активного проекта."""
        if self._mog_sources:
            return SourceCollection(self._mog_sources)
        for source in self.tile_sources.active_tile_sources():
            if source.type == TileSourceType.MOG_COLLECTION:
                return SourceCollection.from_collection_url(source.url)
        msg = 'No MOG collection tile source is configured'
        raise NoActiveSourceError(msg)

    def _planner(self) -> TileRequestPlanner:
        return TileRequestPlanner(self._source_collection(), self.index_loader)

    async def estimate_size_on_disk(self, bounds: Bounds) -> int:
        """Bytes the tiles of bounds would take, without downloading them."""
        requests = await self._planner().build_tile_requests(bounds)
        return sum(r.total_bytes for r in requests)

    async def has_high_resolution_imagery(self, bounds: Bounds) -> bool:
        """True if at least one tile exists at the collection's maximum zoom."""
        planner = self._planner()
        max_zoom = planner.collection.zoom_range.max_zoom
        try:
            requests = await planner.build_tile_requests(
                bounds, ZoomRange(min_zoom=max_zoom, max_zoom=max_zoom)
            )
        except NoIntersectingSourceError:
            # Нет файла региона (например, открытое море)
            return False
        return bool(requests)

    # --- download ---

    async def download_tiles(self, bounds: Bounds) -> AsyncIterator[tuple[int, int]]:
        """
        Download tiles of bounds over the collection's full zoom range.

        Yields (bytes_downloaded, total_bytes) after each tile write. When the
        download completes with at least one byte written, a new DOWNLOADED
        area is persisted. Errors and cancellation persist nothing.

        Raises:
            PlanningError: before any tile I/O.
            DownloadError: from the failing request; earlier tiles stay on disk.
        """
        requests = await self._planner().build_tile_requests(bounds)
        total_bytes = sum(r.total_bytes for r in requests)
        bytes_downloaded = 0
        downloader = TileDownloader(self._session, self.tiles_root)
        async with contextlib.aclosing(downloader.download(requests)) as progress:
            async for n_bytes in progress:
                bytes_downloaded += n_bytes
                yield bytes_downloaded, total_bytes
        if bytes_downloaded > 0:
            await self._add_offline_area(bounds, requests)
        else:
            logger.info('Nothing downloaded for %s, no offline area created', bounds)

    async def _add_offline_area(self, bounds: Bounds, requests: list[TileRequest]) -> OfflineArea:
        tiles = frozenset(c for r in requests for c in r.coordinates)
        zoom_range = ZoomRange.of(c.zoom for c in tiles)
        name = await self._area_name(bounds.shrink(AREA_NAME_SENSITIVITY))
        area = OfflineArea(
            id=self._id_factory(),
            state=OfflineAreaState.DOWNLOADED,
            bounds=bounds,
            name=name,
            zoom_range=zoom_range,
            tiles=tiles,
        )
        await asyncio.to_thread(self._upsert_locked, area)
        return area

    def _upsert_locked(self, area: OfflineArea) -> None:
        with self.reclaimer.lock:
            self.store.upsert(area)

    async def _area_name(self, bounds: Bounds) -> str:
        if self._geocoder is None:
            return UNNAMED_AREA_NAME
        try:
            name = await self._geocoder.get_area_name(bounds)
        except Exception:
            logger.warning('Area name lookup failed, using default name', exc_info=True)
            return UNNAMED_AREA_NAME
        return name or UNNAMED_AREA_NAME

    # --- local state ---

    def size_on_device(self, area: OfflineArea) -> int:
        """Bytes currently occupied by the area's tiles on disk."""
        total = 0
        for coord in area.tiles:
            with contextlib.suppress(FileNotFoundError):
                total += tile_path(self.tiles_root, coord).stat().st_size
        return total

    async def remove_from_device(self, area: OfflineArea) -> ReclaimResult:
        """Delete the area and every tile no remaining area references."""
        return await asyncio.to_thread(self.reclaimer.reclaim, area)

    def local_tile_sources(self) -> list[TileSource]:
        """Locally servable tile sources clipped to all stored areas."""
        return self._apply_bounds([a.bounds for a in self.store.get_all()])

    async def observe_local_tile_sources(self) -> AsyncIterator[list[TileSource]]:
        async with contextlib.aclosing(self.store.observe_all()) as snapshots:
            async for areas in snapshots:
                yield self._apply_bounds([a.bounds for a in areas])

    def _apply_bounds(self, clip_bounds: list[Bounds]) -> list[TileSource]:
        url = local_tile_url(self.tiles_root)
        return [
            TileSource(url=url, type=TileSourceType.TILED_WEB_MAP, clip_bounds=tuple(clip_bounds))
            for source in self.tile_sources.active_tile_sources()
            if source.type == TileSourceType.MOG_COLLECTION
        ]
