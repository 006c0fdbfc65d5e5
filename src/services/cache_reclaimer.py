"""Reclamation of tiles no longer referenced by any offline area."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tiles.storage import remove_tile

if TYPE_CHECKING:
    from domain.models import OfflineArea, TileCoordinate
    from persistence.area_store import OfflineAreaStore

logger = logging.getLogger(__name__)


@dataclass
class ReclaimResult:
    """Итог одного прохода очистки."""

    tiles_removed: int = 0
    dirs_removed: int = 0
    tiles_skipped: int = 0


class CacheReclaimer:
    """
    Deletes an offline area and the tiles only it referenced.

    Reference counts are recomputed from the full area list on every pass,
    after the area record is gone. Passes are serialized by ``lock``, which
    other writers of the store share.
    """

    def __init__(self, store: OfflineAreaStore, tiles_root: str | Path) -> None:
        self.store = store
        self.tiles_root = Path(tiles_root)
        self.lock = threading.Lock()

    def reclaim(self, area: OfflineArea) -> ReclaimResult:
        with self.lock:
            candidate_tiles = area.tiles
            if not candidate_tiles:
                logger.warning('No tiles associated with offline area %s', area.id)

            # Сначала запись: прерывание ниже оставит лишь осиротевшие файлы
            self.store.delete(area.id)

            remaining_tiles = referenced_tiles(self.store.get_all())
            tiles_to_remove = candidate_tiles - remaining_tiles

            result = ReclaimResult()
            for coord in sorted(tiles_to_remove):
                try:
                    result.dirs_removed += remove_tile(self.tiles_root, coord)
                except OSError:
                    result.tiles_skipped += 1
                    logger.warning('Failed to remove tile %s, skipping', coord, exc_info=True)
                    continue
                result.tiles_removed += 1

            logger.info(
                'Reclaimed area %s: %d tile(s) removed, %d kept by other areas, '
                '%d director(ies) removed, %d skipped',
                area.id,
                result.tiles_removed,
                len(candidate_tiles) - len(tiles_to_remove),
                result.dirs_removed,
                result.tiles_skipped,
            )
            return result


def referenced_tiles(areas: list[OfflineArea]) -> frozenset[TileCoordinate]:
    """Объединение наборов тайлов всех областей."""
    tiles: set[TileCoordinate] = set()
    for area in areas:
        tiles.update(area.tiles)
    return frozenset(tiles)
