"""Durable, live-updating index of offline areas.

SqliteOfflineAreaStore keeps areas and their tile sets in one SQLite database
and pushes a full snapshot to every observer after each mutation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from domain.models import Bounds, OfflineArea, TileCoordinate, ZoomRange
from shared.constants import OfflineAreaState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class OfflineAreaStore(ABC):
    """Contract of the offline area index."""

    @abstractmethod
    def upsert(self, area: OfflineArea) -> None:
        """Insert or fully replace the record with area.id."""

    @abstractmethod
    def get(self, area_id: str) -> OfflineArea | None:
        """Point lookup; None when absent."""

    @abstractmethod
    def get_all(self) -> list[OfflineArea]:
        """Current snapshot, consistent with all completed mutations."""

    @abstractmethod
    def delete(self, area_id: str) -> bool:
        """Remove the record only; tile files are not touched."""

    @abstractmethod
    def observe_all(self) -> AsyncIterator[list[OfflineArea]]:
        """Current snapshot, then a new snapshot after every mutation."""


class SqliteOfflineAreaStore(OfflineAreaStore):
    """SQLite-backed offline area store.

    Features:
    - WAL mode, one connection guarded by a lock (read-after-write consistent)
    - Tile sets in a child table, replaced together with the area row
    - Per-subscriber asyncio queues for in-order snapshot delivery

    Usage:
        store = SqliteOfflineAreaStore(files_dir / 'offline_areas.sqlite')
        store.upsert(area)
        async for areas in store.observe_all():
            ...
        store.close()
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._subscribers: list[tuple[asyncio.AbstractEventLoop, asyncio.Queue[list[OfflineArea]]]] = []
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute('PRAGMA journal_mode=WAL')
        self._conn.execute('PRAGMA synchronous=NORMAL')
        self._conn.execute('PRAGMA foreign_keys=ON')
        self._init_schema()
        logger.info('Offline area store opened at %s', self.db_path)

    def _init_schema(self) -> None:
        self._conn.executescript('''
            CREATE TABLE IF NOT EXISTS offline_areas (
                id TEXT PRIMARY KEY,
                state TEXT NOT NULL,
                south REAL NOT NULL,
                west REAL NOT NULL,
                north REAL NOT NULL,
                east REAL NOT NULL,
                name TEXT NOT NULL,
                min_zoom INTEGER NOT NULL,
                max_zoom INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS offline_area_tiles (
                area_id TEXT NOT NULL REFERENCES offline_areas(id) ON DELETE CASCADE,
                zoom INTEGER NOT NULL,
                x INTEGER NOT NULL,
                y INTEGER NOT NULL,
                PRIMARY KEY (area_id, zoom, x, y)
            );

            CREATE INDEX IF NOT EXISTS idx_area_tiles_tile ON offline_area_tiles(zoom, x, y);
        ''')
        self._conn.commit()

    def upsert(self, area: OfflineArea) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    '''INSERT INTO offline_areas
                       (id, state, south, west, north, east, name, min_zoom, max_zoom)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(id) DO UPDATE SET
                         state = excluded.state,
                         south = excluded.south,
                         west = excluded.west,
                         north = excluded.north,
                         east = excluded.east,
                         name = excluded.name,
                         min_zoom = excluded.min_zoom,
                         max_zoom = excluded.max_zoom''',
                    (
                        area.id,
                        area.state.value,
                        area.bounds.south,
                        area.bounds.west,
                        area.bounds.north,
                        area.bounds.east,
                        area.name,
                        area.zoom_range.min_zoom,
                        area.zoom_range.max_zoom,
                    ),
                )
                self._conn.execute('DELETE FROM offline_area_tiles WHERE area_id = ?', (area.id,))
                self._conn.executemany(
                    'INSERT INTO offline_area_tiles (area_id, zoom, x, y) VALUES (?, ?, ?, ?)',
                    [(area.id, t.zoom, t.x, t.y) for t in area.tiles],
                )
            logger.info('Offline area %s saved (%d tiles)', area.id, len(area.tiles))
            self._notify()

    def get(self, area_id: str) -> OfflineArea | None:
        with self._lock:
            row = self._conn.execute(
                '''SELECT id, state, south, west, north, east, name, min_zoom, max_zoom
                   FROM offline_areas WHERE id = ?''',
                (area_id,),
            ).fetchone()
            if row is None:
                return None
            tiles = self._conn.execute(
                'SELECT zoom, x, y FROM offline_area_tiles WHERE area_id = ?',
                (area_id,),
            ).fetchall()
            return self._to_area(row, tiles)

    def get_all(self) -> list[OfflineArea]:
        with self._lock:
            return self._load_all()

    def delete(self, area_id: str) -> bool:
        with self._lock:
            with self._conn:
                cursor = self._conn.execute('DELETE FROM offline_areas WHERE id = ?', (area_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info('Offline area %s deleted', area_id)
                self._notify()
            return deleted

    async def observe_all(self) -> AsyncIterator[list[OfflineArea]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[list[OfflineArea]] = asyncio.Queue()
        subscriber = (loop, queue)
        with self._lock:
            queue.put_nowait(self._load_all())
            self._subscribers.append(subscriber)
        try:
            while True:
                yield await queue.get()
        finally:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

    def _notify(self) -> None:
        """Рассылает снимок подписчикам; вызывается под self._lock."""
        if not self._subscribers:
            return
        snapshot = self._load_all()
        # Через очередь цикла даже из его же потока: порядок снимков = порядок изменений
        for loop, queue in list(self._subscribers):
            try:
                loop.call_soon_threadsafe(queue.put_nowait, list(snapshot))
            except RuntimeError:
                # Цикл подписчика закрыт
                self._subscribers.remove((loop, queue))

    def _load_all(self) -> list[OfflineArea]:
        rows = self._conn.execute(
            '''SELECT id, state, south, west, north, east, name, min_zoom, max_zoom
               FROM offline_areas ORDER BY rowid'''
        ).fetchall()
        tiles_by_area: dict[str, list[tuple[int, int, int]]] = {}
        for area_id, zoom, x, y in self._conn.execute(
            'SELECT area_id, zoom, x, y FROM offline_area_tiles'
        ):
            tiles_by_area.setdefault(area_id, []).append((zoom, x, y))
        return [self._to_area(row, tiles_by_area.get(row[0], [])) for row in rows]

    @staticmethod
    def _to_area(row: tuple, tiles: list[tuple[int, int, int]]) -> OfflineArea:
        area_id, state, south, west, north, east, name, min_zoom, max_zoom = row
        return OfflineArea(
            id=area_id,
            state=OfflineAreaState(state),
            bounds=Bounds(south=south, west=west, north=north, east=east),
            name=name,
            zoom_range=ZoomRange(min_zoom=min_zoom, max_zoom=max_zoom),
            tiles=frozenset(TileCoordinate(*t) for t in tiles),
        )

    def close(self) -> None:
        with self._lock:
            with contextlib.suppress(sqlite3.Error):
                self._conn.close()
        logger.info('Offline area store closed')

    def __enter__(self) -> SqliteOfflineAreaStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
