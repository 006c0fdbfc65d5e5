from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import TileSource


class TileSourceProvider(Protocol):
    """Источники тайлов активного проекта."""

    def active_tile_sources(self) -> list[TileSource]: ...


class StaticTileSourceProvider:
    """Фиксированный список источников (из профиля настроек)."""

    def __init__(self, sources: Sequence[TileSource] = ()) -> None:
        self._sources = list(sources)

    def active_tile_sources(self) -> list[TileSource]:
        return list(self._sources)
