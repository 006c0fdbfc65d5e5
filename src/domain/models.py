from __future__ import annotations

from collections.abc import Iterable
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.constants import TILE_FILE_EXT, OfflineAreaState, TileSourceType


class TileCoordinate(NamedTuple):
    """Индекс тайла (zoom, x, y) в схеме slippy map."""

    zoom: int
    x: int
    y: int

    def path(self, ext: str = TILE_FILE_EXT) -> str:
        """Относительный путь файла тайла: {z}/{x}/{y}.{ext}."""
        return f'{self.zoom}/{self.x}/{self.y}.{ext}'


class Bounds(BaseModel):
    """Географический прямоугольник (градусы WGS84)."""

    model_config = ConfigDict(frozen=True)

    south: float = Field(ge=-90.0, le=90.0)
    west: float = Field(ge=-180.0, le=180.0)
    north: float = Field(ge=-90.0, le=90.0)
    east: float = Field(ge=-180.0, le=180.0)

    @model_validator(mode='after')
    def _check_order(self) -> Bounds:
        if self.south > self.north:
            msg = f'south ({self.south}) must not exceed north ({self.north})'
            raise ValueError(msg)
        if self.west > self.east:
            msg = f'west ({self.west}) must not exceed east ({self.east})'
            raise ValueError(msg)
        return self

    @property
    def center(self) -> tuple[float, float]:
        """Центр (lat, lng)."""
        return (self.south + self.north) / 2.0, (self.west + self.east) / 2.0

    def intersects(self, other: Bounds) -> bool:
        """Пересечение замкнутых прямоугольников (касание по краю считается)."""
        return not (
            other.west > self.east
            or other.east < self.west
            or other.south > self.north
            or other.north < self.south
        )

    def shrink(self, factor: float) -> Bounds:
        """Сжимает прямоугольник к центру: factor=0.5 вдвое уменьшает стороны."""
        lat_c, lng_c = self.center
        half_h = (self.north - self.south) / 2.0 * factor
        half_w = (self.east - self.west) / 2.0 * factor
        return Bounds(
            south=lat_c - half_h,
            west=lng_c - half_w,
            north=lat_c + half_h,
            east=lng_c + half_w,
        )


class ZoomRange(BaseModel):
    """Замкнутый интервал уровней масштаба [min_zoom, max_zoom]."""

    model_config = ConfigDict(frozen=True)

    min_zoom: int = Field(ge=0)
    max_zoom: int = Field(ge=0)

    @model_validator(mode='after')
    def _check_order(self) -> ZoomRange:
        if self.min_zoom > self.max_zoom:
            msg = f'min_zoom ({self.min_zoom}) must not exceed max_zoom ({self.max_zoom})'
            raise ValueError(msg)
        return self

    @classmethod
    def of(cls, zooms: Iterable[int]) -> ZoomRange:
        """Минимальный диапазон, содержащий все переданные уровни."""
        values = list(zooms)
        if not values:
            msg = 'Cannot build a zoom range from an empty collection'
            raise ValueError(msg)
        return cls(min_zoom=min(values), max_zoom=max(values))

    def intersect(self, other: ZoomRange) -> ZoomRange | None:
        lo = max(self.min_zoom, other.min_zoom)
        hi = min(self.max_zoom, other.max_zoom)
        if lo > hi:
            return None
        return ZoomRange(min_zoom=lo, max_zoom=hi)

    def __contains__(self, zoom: object) -> bool:
        return isinstance(zoom, int) and self.min_zoom <= zoom <= self.max_zoom

    def levels(self) -> range:
        return range(self.min_zoom, self.max_zoom + 1)


class TileSource(BaseModel):
    """Описание удалённого или локального источника тайлов."""

    model_config = ConfigDict(frozen=True)

    url: str
    type: TileSourceType
    clip_bounds: tuple[Bounds, ...] = ()


class OfflineArea(BaseModel):
    """Сохранённая офлайн-область. Изменяется только полной заменой записи."""

    model_config = ConfigDict(frozen=True)

    id: str
    state: OfflineAreaState
    bounds: Bounds
    name: str
    zoom_range: ZoomRange
    tiles: frozenset[TileCoordinate] = frozenset()

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v:
            msg = 'Offline area id must not be empty'
            raise ValueError(msg)
        return v
