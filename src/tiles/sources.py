from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from domain.models import Bounds, TileCoordinate, ZoomRange
from domain.settings import MogSourceConfig
from geo.tile_math import tile_bounds, tiles_in_bounds
from shared.constants import (
    MOG_REGION_MAX_ZOOM,
    MOG_REGION_MIN_ZOOM,
    MOG_REGION_PATH,
    MOG_WORLD_MAX_ZOOM,
    MOG_WORLD_MIN_ZOOM,
    MOG_WORLD_PATH,
)

logger = logging.getLogger(__name__)

WORLD_EXTENT = TileCoordinate(0, 0, 0)


@dataclass(frozen=True)
class RemoteImageSource:
    """Один удалённый файл пирамиды и тайл, который он покрывает."""

    url: str
    extent: TileCoordinate
    zoom_range: ZoomRange

    @property
    def bounds(self) -> Bounds:
        return tile_bounds(self.extent)


def default_mog_sources(collection_url: str) -> list[MogSourceConfig]:
    """Стандартная раскладка коллекции: мировой файл + региональные файлы на зуме 8."""
    base = collection_url.rstrip('/')
    return [
        MogSourceConfig(
            url_template=f'{base}/{MOG_WORLD_PATH}',
            zoom_range=ZoomRange(min_zoom=MOG_WORLD_MIN_ZOOM, max_zoom=MOG_WORLD_MAX_ZOOM),
        ),
        MogSourceConfig(
            url_template=f'{base}/{MOG_REGION_PATH}',
            zoom_range=ZoomRange(min_zoom=MOG_REGION_MIN_ZOOM, max_zoom=MOG_REGION_MAX_ZOOM),
        ),
    ]


def _expand(template: str, coord: TileCoordinate) -> str:
    return (
        template.replace('{z}', str(coord.zoom))
        .replace('{x}', str(coord.x))
        .replace('{y}', str(coord.y))
    )


class SourceCollection:
    """Упорядоченный набор удалённых источников одной коллекции."""

    def __init__(self, configs: Sequence[MogSourceConfig]):
        if not configs:
            msg = 'Source collection must contain at least one source'
            raise ValueError(msg)
        self.configs = list(configs)

    @classmethod
    def from_collection_url(cls, collection_url: str) -> SourceCollection:
        return cls(default_mog_sources(collection_url))

    @property
    def zoom_range(self) -> ZoomRange:
        """Полный диапазон зумов коллекции."""
        return ZoomRange(
            min_zoom=min(c.zoom_range.min_zoom for c in self.configs),
            max_zoom=max(c.zoom_range.max_zoom for c in self.configs),
        )

    def sources_for(self, bounds: Bounds) -> list[RemoteImageSource]:
        """Источники, охват которых пересекает bounds, в порядке конфигурации."""
        selected: list[RemoteImageSource] = []
        for cfg in self.configs:
            if cfg.bounds is not None and not cfg.bounds.intersects(bounds):
                continue
            if cfg.is_template:
                extents = tiles_in_bounds(bounds, cfg.zoom_range.min_zoom)
            else:
                extents = iter([WORLD_EXTENT])
            for extent in extents:
                extent_bounds = tile_bounds(extent)
                if not extent_bounds.intersects(bounds):
                    continue
                if cfg.bounds is not None and not extent_bounds.intersects(cfg.bounds):
                    continue
                selected.append(
                    RemoteImageSource(
                        url=_expand(cfg.url_template, extent),
                        extent=extent,
                        zoom_range=cfg.zoom_range,
                    )
                )
        logger.debug('%d source(s) intersect %s', len(selected), bounds)
        return selected
