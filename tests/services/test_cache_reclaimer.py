"""Tests for CacheReclaimer."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from domain.models import Bounds, OfflineArea, TileCoordinate, ZoomRange
from persistence.area_store import SqliteOfflineAreaStore
from services.cache_reclaimer import CacheReclaimer, referenced_tiles
from shared.constants import OfflineAreaState
from tiles.storage import remove_tile, tile_path, write_tile_atomic

SHARED = {TileCoordinate(0, 0, 0), TileCoordinate(1, 1, 0)}
ONLY_A = {TileCoordinate(2, 2, 1), TileCoordinate(2, 3, 1)}
ONLY_B = {TileCoordinate(2, 2, 2)}


def make_area(area_id: str, tiles: set[TileCoordinate]) -> OfflineArea:
    return OfflineArea(
        id=area_id,
        state=OfflineAreaState.DOWNLOADED,
        bounds=Bounds(south=0, west=0, north=1, east=1),
        name=area_id,
        zoom_range=ZoomRange.of(c.zoom for c in tiles),
        tiles=frozenset(tiles),
    )


@pytest.fixture
def store(tmp_path):
    s = SqliteOfflineAreaStore(tmp_path / 'areas.sqlite')
    yield s
    s.close()


@pytest.fixture
def tiles_root(tmp_path):
    root = tmp_path / 'tiles'
    for coord in SHARED | ONLY_A | ONLY_B:
        write_tile_atomic(tile_path(root, coord), b'jpeg')
    return root


class TestCacheReclaimer:
    def test_removes_only_unreferenced_tiles(self, store, tiles_root):
        area_a = make_area('a', SHARED | ONLY_A)
        store.upsert(area_a)
        store.upsert(make_area('b', SHARED | ONLY_B))

        result = CacheReclaimer(store, tiles_root).reclaim(area_a)

        assert store.get('a') is None
        assert result.tiles_removed == len(ONLY_A)
        assert result.tiles_skipped == 0
        for coord in ONLY_A:
            assert not tile_path(tiles_root, coord).exists()
        for coord in SHARED | ONLY_B:
            assert tile_path(tiles_root, coord).exists()

    def test_last_area_removes_everything(self, store, tiles_root):
        area_a = make_area('a', SHARED | ONLY_A)
        area_b = make_area('b', SHARED | ONLY_B)
        store.upsert(area_a)
        store.upsert(area_b)
        reclaimer = CacheReclaimer(store, tiles_root)

        reclaimer.reclaim(area_a)
        result = reclaimer.reclaim(area_b)

        assert result.tiles_removed == len(SHARED | ONLY_B)
        assert store.get_all() == []
        assert list(tiles_root.iterdir()) == []

    def test_empty_directories_counted(self, store, tiles_root):
        area = make_area('b', ONLY_B)
        store.upsert(area)
        result = CacheReclaimer(store, tiles_root).reclaim(area)
        # 2/2/2.jpg: каталог 2/2 остаётся (в нём 2/2/1.jpg)
        assert result.dirs_removed == 0
        area_a = make_area('a', ONLY_A)
        store.upsert(area_a)
        result = CacheReclaimer(store, tiles_root).reclaim(area_a)
        assert result.dirs_removed == 3
        assert not (tiles_root / '2').exists()

    def test_identical_areas_keep_tiles_until_last(self, store, tiles_root):
        first = make_area('first', ONLY_A)
        second = make_area('second', ONLY_A)
        store.upsert(first)
        store.upsert(second)
        reclaimer = CacheReclaimer(store, tiles_root)

        assert reclaimer.reclaim(first).tiles_removed == 0
        assert all(tile_path(tiles_root, c).exists() for c in ONLY_A)
        assert reclaimer.reclaim(second).tiles_removed == len(ONLY_A)

    def test_missing_files_are_fine(self, store, tmp_path):
        area = make_area('a', ONLY_A)
        store.upsert(area)
        result = CacheReclaimer(store, tmp_path / 'empty').reclaim(area)
        assert result.tiles_removed == len(ONLY_A)
        assert store.get('a') is None

    def test_unremovable_tile_is_skipped(self, store, tiles_root):
        area = make_area('a', ONLY_A)
        store.upsert(area)
        failing = min(ONLY_A)

        def flaky_remove(root, coord):
            if coord == failing:
                raise PermissionError('locked')
            return remove_tile(root, coord)

        with patch('services.cache_reclaimer.remove_tile', side_effect=flaky_remove):
            result = CacheReclaimer(store, tiles_root).reclaim(area)

        assert result.tiles_skipped == 1
        assert result.tiles_removed == len(ONLY_A) - 1
        assert tile_path(tiles_root, failing).exists()
        assert store.get('a') is None

    def test_area_not_in_store(self, store, tiles_root):
        store.upsert(make_area('b', ONLY_A))
        result = CacheReclaimer(store, tiles_root).reclaim(make_area('ghost', ONLY_A | ONLY_B))
        assert result.tiles_removed == len(ONLY_B)
        assert all(tile_path(tiles_root, c).exists() for c in ONLY_A)


def test_referenced_tiles():
    areas = [make_area('a', SHARED | ONLY_A), make_area('b', ONLY_B)]
    assert referenced_tiles(areas) == frozenset(SHARED | ONLY_A | ONLY_B)
    assert referenced_tiles([]) == frozenset()
