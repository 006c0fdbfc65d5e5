"""Tests for OfflineAreaRepository: end-to-end download, naming and reclamation."""

from __future__ import annotations

import asyncio
import itertools

import pytest

from domain.models import Bounds, TileCoordinate, TileSource, ZoomRange
from domain.settings import MogSourceConfig
from fakes import FakeGeocoder, FakeRangeSession, build_tiff, pyramid
from geo.tile_math import tiles_in_bounds
from persistence.area_store import SqliteOfflineAreaStore
from services.offline_area_repository import OfflineAreaRepository
from services.tile_source_provider import StaticTileSourceProvider
from shared.constants import UNNAMED_AREA_NAME, OfflineAreaState, TileSourceType
from shared.errors import NoActiveSourceError, PlanningError, TransportError
from tiles.index import TileIndexLoader
from tiles.planner import TileRequestPlanner
from tiles.sources import WORLD_EXTENT, SourceCollection
from tiles.storage import tile_path

BASE = 'https://tiles.test/collection'
WORLD_URL = f'{BASE}/world.tif'
MAX_ZOOM = 4
BOUNDS = Bounds(south=30, west=0, north=60, east=40)
INNER = Bounds(south=44, west=14, north=46, east=16)


def _expected(bounds: Bounds, max_zoom: int = MAX_ZOOM) -> frozenset[TileCoordinate]:
    return frozenset(c for z in range(max_zoom + 1) for c in tiles_in_bounds(bounds, z))


def _files(root) -> set[TileCoordinate]:
    if not root.exists():
        return set()
    return {
        TileCoordinate(int(p.parent.parent.name), int(p.parent.name), int(p.stem))
        for p in root.rglob('*.jpg')
    }


async def _download(repo: OfflineAreaRepository, bounds: Bounds) -> list[tuple[int, int]]:
    return [p async for p in repo.download_tiles(bounds)]


@pytest.fixture
def store(tmp_path):
    s = SqliteOfflineAreaStore(tmp_path / 'areas.sqlite')
    yield s
    s.close()


@pytest.fixture
def world():
    ifds, tiles = pyramid(WORLD_EXTENT, MAX_ZOOM)
    return build_tiff(ifds), tiles


@pytest.fixture
def make_repo(tmp_path, store):
    def factory(
        session: FakeRangeSession,
        *,
        header_session: FakeRangeSession | None = None,
        geocoder=None,
        tile_sources=(TileSource(url=BASE, type=TileSourceType.MOG_COLLECTION),),
        mog_sources=(
            MogSourceConfig(url_template=WORLD_URL, zoom_range=ZoomRange(min_zoom=0, max_zoom=MAX_ZOOM)),
        ),
    ) -> OfflineAreaRepository:
        ids = (f'area-{i}' for i in itertools.count(1))
        return OfflineAreaRepository(
            store,
            StaticTileSourceProvider(tile_sources),
            tiles_root=tmp_path / 'tiles',
            index_loader=TileIndexLoader(header_session or session),
            session=session,
            geocoder=geocoder,
            mog_sources=mog_sources,
            id_factory=lambda: next(ids),
        )

    return factory


class TestDownloadTiles:
    @pytest.mark.asyncio
    async def test_download_creates_area(self, make_repo, world, store):
        blob, tiles = world
        geocoder = FakeGeocoder('Somewhere, Europe')
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}), geocoder=geocoder)

        progress = await _download(repo, BOUNDS)

        expected = _expected(BOUNDS)
        done, total = progress[-1]
        assert done == total == sum(len(tiles[c]) for c in expected)
        assert [d for d, _ in progress] == sorted(d for d, _ in progress)
        assert {t for _, t in progress} == {total}

        (area,) = store.get_all()
        assert area.id == 'area-1'
        assert area.state == OfflineAreaState.DOWNLOADED
        assert area.bounds == BOUNDS
        assert area.name == 'Somewhere, Europe'
        assert area.zoom_range == ZoomRange(min_zoom=0, max_zoom=MAX_ZOOM)
        assert area.tiles == expected
        assert _files(repo.tiles_root) == set(expected)
        assert geocoder.calls == [BOUNDS.shrink(0.5)]

    @pytest.mark.asyncio
    async def test_geocoder_failure_uses_default_name(self, make_repo, world, store):
        blob, _ = world
        geocoder = FakeGeocoder(error=TransportError('rate limited', status=429))
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}), geocoder=geocoder)
        await _download(repo, INNER)
        assert store.get_all()[0].name == UNNAMED_AREA_NAME

    @pytest.mark.asyncio
    async def test_without_geocoder(self, make_repo, world, store):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        await _download(repo, INNER)
        assert store.get_all()[0].name == UNNAMED_AREA_NAME

    @pytest.mark.asyncio
    async def test_estimate_matches_download_without_writing(self, make_repo, world):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))

        estimate = await repo.estimate_size_on_disk(BOUNDS)
        assert _files(repo.tiles_root) == set()

        progress = await _download(repo, BOUNDS)
        assert estimate == progress[-1][1]

    @pytest.mark.asyncio
    async def test_no_active_source(self, make_repo, store):
        repo = make_repo(FakeRangeSession(), tile_sources=(), mog_sources=None)
        with pytest.raises(NoActiveSourceError):
            await repo.estimate_size_on_disk(BOUNDS)
        with pytest.raises(PlanningError):
            await _download(repo, BOUNDS)
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_area_without_imagery(self, make_repo, store):
        repo = make_repo(FakeRangeSession())
        with pytest.raises(PlanningError):
            await _download(repo, BOUNDS)
        assert store.get_all() == []
        assert _files(repo.tiles_root) == set()

    @pytest.mark.asyncio
    async def test_interrupted_download_leaves_written_tiles_but_no_area(self, make_repo, world, store):
        blob, tiles = world
        headers = FakeRangeSession({WORLD_URL: blob})
        collection = SourceCollection(
            [MogSourceConfig(url_template=WORLD_URL, zoom_range=ZoomRange(min_zoom=0, max_zoom=MAX_ZOOM))]
        )
        planned = await TileRequestPlanner(collection, TileIndexLoader(headers)).build_tile_requests(BOUNDS)
        first = planned[0]
        assert len(first.tiles) > 3
        start, _ = first.byte_range
        # Обрыв посреди четвёртого тайла первого запроса
        fail_at = first.tiles[2].end - start + 1
        written = {t.coordinate for t in first.tiles if t.end - start <= fail_at}
        assert len(written) == 3

        payloads = FakeRangeSession({WORLD_URL: blob}, fail_at={WORLD_URL: fail_at})
        repo = make_repo(payloads, header_session=headers)

        with pytest.raises(TransportError):
            await _download(repo, BOUNDS)

        assert store.get_all() == []
        assert _files(repo.tiles_root) == written
        for coord in written:
            assert tile_path(repo.tiles_root, coord).read_bytes() == tiles[coord]

    @pytest.mark.asyncio
    async def test_cancelled_download_persists_nothing(self, make_repo, world, store):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))

        progress = repo.download_tiles(BOUNDS)
        done, total = await progress.__anext__()
        await progress.aclose()

        assert 0 < done < total
        assert store.get_all() == []
        assert len(_files(repo.tiles_root)) == 1

    @pytest.mark.asyncio
    async def test_sparse_area_creates_nothing(self, make_repo, store):
        ifds, _ = pyramid(WORLD_EXTENT, MAX_ZOOM, missing=set(_expected(INNER)))
        repo = make_repo(FakeRangeSession({WORLD_URL: build_tiff(ifds)}))
        assert await _download(repo, INNER) == []
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_default_collection_layout(self, make_repo, store):
        point = Bounds(south=55.7, west=37.6, north=55.7, east=37.6)
        ifds, _ = pyramid(WORLD_EXTENT, 1)
        session = FakeRangeSession({WORLD_URL: build_tiff(ifds)})
        repo = make_repo(session, mog_sources=None)

        await _download(repo, point)

        (area,) = store.get_all()
        assert area.zoom_range == ZoomRange(min_zoom=0, max_zoom=1)
        assert area.tiles == _expected(point, max_zoom=1)
        region = next(tiles_in_bounds(point, 8))
        assert f'{BASE}/{region.x}/{region.y}.tif' in session.urls()


class TestHighResolution:
    @pytest.mark.asyncio
    async def test_available(self, make_repo, world):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        assert await repo.has_high_resolution_imagery(INNER) is True

    @pytest.mark.asyncio
    async def test_missing_at_max_zoom(self, make_repo):
        missing = set(tiles_in_bounds(INNER, MAX_ZOOM))
        ifds, _ = pyramid(WORLD_EXTENT, MAX_ZOOM, missing=missing)
        repo = make_repo(FakeRangeSession({WORLD_URL: build_tiff(ifds)}))
        assert await repo.has_high_resolution_imagery(INNER) is False

    @pytest.mark.asyncio
    async def test_no_region_file_is_not_an_error(self, make_repo, world):
        blob, _ = world
        ocean = Bounds(south=-30, west=-20, north=-29.9, east=-19.9)
        session = FakeRangeSession({WORLD_URL: blob})
        repo = make_repo(session, mog_sources=None)

        assert await repo.estimate_size_on_disk(ocean) > 0
        assert await repo.has_high_resolution_imagery(ocean) is False
        region = next(tiles_in_bounds(ocean, 8))
        assert f'{BASE}/{region.x}/{region.y}.tif' in session.urls()


class TestRemoveFromDevice:
    @pytest.mark.asyncio
    async def test_repeated_download_shares_tiles(self, make_repo, world, store):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))

        await _download(repo, INNER)
        await _download(repo, INNER)
        first, second = store.get_all()
        assert first.id != second.id
        assert first.tiles == second.tiles

        await repo.remove_from_device(first)
        assert _files(repo.tiles_root) == set(second.tiles)

        await repo.remove_from_device(second)
        assert _files(repo.tiles_root) == set()
        assert store.get_all() == []

    @pytest.mark.asyncio
    async def test_contained_area_survives_outer_removal(self, make_repo, world, store):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        await _download(repo, BOUNDS)
        await _download(repo, INNER)
        outer, inner = store.get_all()
        assert inner.tiles < outer.tiles

        result = await repo.remove_from_device(outer)

        assert result.tiles_removed == len(outer.tiles - inner.tiles)
        assert _files(repo.tiles_root) == set(inner.tiles)
        assert [a.id for a in store.get_all()] == [inner.id]

    @pytest.mark.asyncio
    async def test_size_on_device(self, make_repo, world, store):
        blob, tiles = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        await _download(repo, INNER)
        (area,) = store.get_all()

        assert repo.size_on_device(area) == sum(len(tiles[c]) for c in area.tiles)
        tile_path(repo.tiles_root, min(area.tiles)).unlink()
        assert repo.size_on_device(area) == sum(len(tiles[c]) for c in area.tiles) - 64


class TestLocalTileSources:
    @pytest.mark.asyncio
    async def test_clip_bounds_follow_areas(self, make_repo, world):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))

        (empty,) = repo.local_tile_sources()
        assert empty.type == TileSourceType.TILED_WEB_MAP
        assert empty.clip_bounds == ()
        assert empty.url.startswith('file://')

        await _download(repo, BOUNDS)
        await _download(repo, INNER)
        (source,) = repo.local_tile_sources()
        assert source.clip_bounds == (BOUNDS, INNER)

    @pytest.mark.asyncio
    async def test_no_mog_source_no_local_source(self, make_repo):
        xyz = TileSource(url='https://xyz.test/{z}/{x}/{y}.png', type=TileSourceType.TILED_WEB_MAP)
        repo = make_repo(FakeRangeSession(), tile_sources=(xyz,))
        assert repo.local_tile_sources() == []

    @pytest.mark.asyncio
    async def test_observe_emits_on_change(self, make_repo, world):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        updates = repo.observe_local_tile_sources()
        try:
            (initial,) = await updates.__anext__()
            assert initial.clip_bounds == ()

            await _download(repo, INNER)

            (changed,) = await asyncio.wait_for(updates.__anext__(), timeout=5)
            assert changed.clip_bounds == (INNER,)
        finally:
            await updates.aclose()

    @pytest.mark.asyncio
    async def test_offline_areas_stream(self, make_repo, world):
        blob, _ = world
        repo = make_repo(FakeRangeSession({WORLD_URL: blob}))
        areas = repo.offline_areas()
        try:
            assert await areas.__anext__() == []
            await _download(repo, INNER)
            (area,) = await asyncio.wait_for(areas.__anext__(), timeout=5)
            assert repo.get_offline_area(area.id) == area
        finally:
            await areas.aclose()
