"""Tile index of a remote MOG (Cloud-Optimized GeoTIFF on the slippy-map grid).

The index is read from the TIFF header at the start of the blob. Every
non-mask IFD is one zoom level of the pyramid; its internal tiles map 1:1 to
slippy-map tiles inside the blob's extent tile.
"""

from __future__ import annotations

import asyncio
import logging
import math
import struct
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from domain.models import Bounds, TileCoordinate, ZoomRange
from geo.tile_math import tile_bounds
from infrastructure.http.client import fetch_range
from shared.constants import (
    HEADER_FETCH_BYTES,
    HEADER_MAX_BYTES,
    HTTP_NOT_FOUND,
    INDEX_CACHE_MAX_ENTRIES,
    INDEX_MISS_TTL_S,
    TIFF_MAGIC_BIG,
    TIFF_MAGIC_CLASSIC,
    TIFF_SUBFILE_MASK_BIT,
    TIFF_TAG_IMAGE_WIDTH,
    TIFF_TAG_JPEG_TABLES,
    TIFF_TAG_NEW_SUBFILE_TYPE,
    TIFF_TAG_TILE_BYTE_COUNTS,
    TIFF_TAG_TILE_OFFSETS,
    TIFF_TAG_TILE_WIDTH,
)
from shared.errors import TileIndexError, TransportError

if TYPE_CHECKING:
    import aiohttp

    from tiles.sources import RemoteImageSource

logger = logging.getLogger(__name__)

# TIFF field type -> (struct format, size)
_FIELD_TYPES: dict[int, tuple[str, int]] = {
    1: ('B', 1),  # BYTE
    2: ('B', 1),  # ASCII
    3: ('H', 2),  # SHORT
    4: ('I', 4),  # LONG
    6: ('b', 1),  # SBYTE
    7: ('B', 1),  # UNDEFINED
    8: ('h', 2),  # SSHORT
    9: ('i', 4),  # SLONG
    13: ('I', 4),  # IFD
    16: ('Q', 8),  # LONG8
    17: ('q', 8),  # SLONG8
    18: ('Q', 8),  # IFD8
}

# Защита от зацикленных цепочек IFD
_MAX_IFDS = 64


@dataclass(frozen=True)
class TileMetadata:
    """Положение одного тайла внутри удалённого файла."""

    coordinate: TileCoordinate
    offset: int
    byte_count: int
    jpeg_tables: bytes | None = None

    @property
    def end(self) -> int:
        return self.offset + self.byte_count


@dataclass
class TileIndex:
    """Отображение координата тайла -> диапазон байт в одном удалённом файле."""

    url: str
    extent: TileCoordinate
    tiles: dict[TileCoordinate, TileMetadata] = field(default_factory=dict)

    @property
    def bounds(self) -> Bounds:
        return tile_bounds(self.extent)

    @property
    def zoom_range(self) -> ZoomRange | None:
        if not self.tiles:
            return None
        return ZoomRange.of(c.zoom for c in self.tiles)

    def get(self, coord: TileCoordinate) -> TileMetadata | None:
        return self.tiles.get(coord)

    def __len__(self) -> int:
        return len(self.tiles)


class _HeaderTruncated(Exception):
    """Нужная часть заголовка лежит за пределами прочитанного префикса."""

    def __init__(self, required: int):
        super().__init__(required)
        self.required = required


@dataclass
class _Field:
    type: int
    count: int
    raw: bytes


class _TiffReader:
    def __init__(self, data: bytes):
        self.data = data
        if len(data) < 16:
            raise _HeaderTruncated(16)
        order = data[:2]
        if order == b'II':
            self.bo = '<'
        elif order == b'MM':
            self.bo = '>'
        else:
            msg = f'Not a TIFF file (byte order mark {order!r})'
            raise TileIndexError(msg)
        magic = self.unpack('H', 2)
        if magic == TIFF_MAGIC_CLASSIC:
            self.big = False
            self.first_ifd = self.unpack('I', 4)
        elif magic == TIFF_MAGIC_BIG:
            self.big = True
            if self.unpack('H', 4) != 8:
                msg = 'Unsupported BigTIFF offset size'
                raise TileIndexError(msg)
            self.first_ifd = self.unpack('Q', 8)
        else:
            msg = f'Not a TIFF file (magic {magic})'
            raise TileIndexError(msg)

    @property
    def offset_fmt(self) -> str:
        return 'Q' if self.big else 'I'

    @property
    def offset_size(self) -> int:
        return 8 if self.big else 4

    def need(self, offset: int, length: int) -> None:
        if offset + length > len(self.data):
            raise _HeaderTruncated(offset + length)

    def unpack(self, fmt: str, offset: int) -> int:
        size = struct.calcsize(fmt)
        self.need(offset, size)
        return struct.unpack_from(self.bo + fmt, self.data, offset)[0]

    def read_ifds(self) -> list[dict[int, _Field]]:
        ifds: list[dict[int, _Field]] = []
        seen: set[int] = set()
        offset = self.first_ifd
        count_fmt, count_size = ('Q', 8) if self.big else ('H', 2)
        entry_size = 20 if self.big else 12
        while offset and offset not in seen:
            if len(ifds) >= _MAX_IFDS:
                msg = f'Too many IFDs (>{_MAX_IFDS})'
                raise TileIndexError(msg)
            seen.add(offset)
            n_entries = self.unpack(count_fmt, offset)
            entries_at = offset + count_size
            self.need(entries_at, n_entries * entry_size + self.offset_size)
            tags: dict[int, _Field] = {}
            for i in range(n_entries):
                at = entries_at + i * entry_size
                tag = self.unpack('H', at)
                ftype = self.unpack('H', at + 2)
                if self.big:
                    count = self.unpack('Q', at + 4)
                    raw = self.data[at + 12 : at + 20]
                else:
                    count = self.unpack('I', at + 4)
                    raw = self.data[at + 8 : at + 12]
                tags[tag] = _Field(ftype, count, raw)
            ifds.append(tags)
            offset = self.unpack(self.offset_fmt, entries_at + n_entries * entry_size)
        return ifds

    def values(self, fld: _Field) -> list[int]:
        fmt, size = self._field_type(fld)
        total = fld.count * size
        if total <= self.offset_size:
            return list(struct.unpack_from(f'{self.bo}{fld.count}{fmt}', fld.raw, 0))
        at = struct.unpack_from(self.bo + self.offset_fmt, fld.raw, 0)[0]
        self.need(at, total)
        return list(struct.unpack_from(f'{self.bo}{fld.count}{fmt}', self.data, at))

    def raw_bytes(self, fld: _Field) -> bytes:
        _, size = self._field_type(fld)
        total = fld.count * size
        if total <= self.offset_size:
            return fld.raw[:total]
        at = struct.unpack_from(self.bo + self.offset_fmt, fld.raw, 0)[0]
        self.need(at, total)
        return self.data[at : at + total]

    @staticmethod
    def _field_type(fld: _Field) -> tuple[str, int]:
        try:
            return _FIELD_TYPES[fld.type]
        except KeyError:
            msg = f'Unsupported TIFF field type {fld.type}'
            raise TileIndexError(msg) from None


def _single(reader: _TiffReader, tags: dict[int, _Field], tag: int, default: int | None = None) -> int:
    fld = tags.get(tag)
    if fld is None:
        if default is None:
            msg = f'Required TIFF tag {tag} is missing'
            raise TileIndexError(msg)
        return default
    return reader.values(fld)[0]


def _array(reader: _TiffReader, tags: dict[int, _Field], tag: int) -> list[int]:
    fld = tags.get(tag)
    if fld is None:
        msg = f'Required TIFF tag {tag} is missing'
        raise TileIndexError(msg)
    return reader.values(fld)


def parse_tile_index(data: bytes, url: str, extent: TileCoordinate) -> TileIndex:
    """
    Build a tile index from the header prefix of a MOG blob.

    Raises:
        TileIndexError: the header is not a tiled TIFF.
        _HeaderTruncated: the header extends beyond ``data``.
    """
    reader = _TiffReader(data)
    index = TileIndex(url=url, extent=extent)
    for tags in reader.read_ifds():
        subfile = _single(reader, tags, TIFF_TAG_NEW_SUBFILE_TYPE, default=0)
        if subfile & TIFF_SUBFILE_MASK_BIT:
            continue
        width = _single(reader, tags, TIFF_TAG_IMAGE_WIDTH)
        tile_width = _single(reader, tags, TIFF_TAG_TILE_WIDTH)
        offsets = _array(reader, tags, TIFF_TAG_TILE_OFFSETS)
        byte_counts = _array(reader, tags, TIFF_TAG_TILE_BYTE_COUNTS)
        jpeg_tables = (
            reader.raw_bytes(tags[TIFF_TAG_JPEG_TABLES])
            if TIFF_TAG_JPEG_TABLES in tags
            else None
        )
        if tile_width <= 0 or len(offsets) != len(byte_counts):
            msg = f'Inconsistent tile layout in {url}'
            raise TileIndexError(msg)

        across = math.ceil(width / tile_width)
        if across <= 0 or across & (across - 1):
            logger.warning(
                'Skipping IFD of %s: %d tiles across is not a power of two', url, across
            )
            continue
        dz = across.bit_length() - 1
        zoom = extent.zoom + dz
        origin_x = extent.x << dz
        origin_y = extent.y << dz
        for i, (offset, byte_count) in enumerate(zip(offsets, byte_counts)):
            # Пустые тайлы разреженной пирамиды в индекс не попадают
            if byte_count == 0:
                continue
            coord = TileCoordinate(zoom, origin_x + i % across, origin_y + i // across)
            index.tiles[coord] = TileMetadata(coord, offset, byte_count, jpeg_tables)
    return index


class TileIndexLoader:
    """
    Загружает и кэширует индексы тайлов удалённых источников.

    Заголовок читается range-запросом с начала файла; если его не хватает,
    запрос повторяется с удвоенной длиной (до max_header_bytes).
    Источник, отвечающий 404, считается не имеющим снимков (None); такой
    ответ помнится miss_ttl секунд. В памяти не больше max_entries индексов,
    давно не использованные вытесняются.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        header_fetch_bytes: int = HEADER_FETCH_BYTES,
        max_header_bytes: int = HEADER_MAX_BYTES,
        max_entries: int = INDEX_CACHE_MAX_ENTRIES,
        miss_ttl: float = INDEX_MISS_TTL_S,
    ) -> None:
        self._session = session
        self.header_fetch_bytes = header_fetch_bytes
        self.max_header_bytes = max_header_bytes
        self.max_entries = max(1, max_entries)
        self.miss_ttl = miss_ttl
        # url -> (index или None, момент загрузки)
        self._cache: OrderedDict[str, tuple[TileIndex | None, float]] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def cached(self, url: str) -> bool:
        return self._lookup(url) is not None

    async def load(self, source: RemoteImageSource) -> TileIndex | None:
        url = source.url
        lock = self._locks.setdefault(url, asyncio.Lock())
        try:
            async with lock:
                entry = self._lookup(url)
                if entry is None:
                    entry = (await self._fetch(source), time.monotonic())
                    self._store(url, entry)
                return entry[0]
        finally:
            if not lock.locked() and self._locks.get(url) is lock:
                del self._locks[url]

    def _lookup(self, url: str) -> tuple[TileIndex | None, float] | None:
        entry = self._cache.get(url)
        if entry is None:
            return None
        index, loaded_at = entry
        if index is None and time.monotonic() - loaded_at >= self.miss_ttl:
            del self._cache[url]
            return None
        self._cache.move_to_end(url)
        return entry

    def _store(self, url: str, entry: tuple[TileIndex | None, float]) -> None:
        self._cache[url] = entry
        self._cache.move_to_end(url)
        while len(self._cache) > self.max_entries:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug('Tile index of %s evicted from cache', evicted)

    async def _fetch(self, source: RemoteImageSource) -> TileIndex | None:
        length = self.header_fetch_bytes
        while True:
            try:
                data = await fetch_range(self._session, source.url, 0, length)
            except TransportError as e:
                if e.status == HTTP_NOT_FOUND:
                    logger.info('No imagery at %s (HTTP 404)', source.url)
                    return None
                raise
            try:
                index = parse_tile_index(data, source.url, source.extent)
            except _HeaderTruncated as e:
                if len(data) < length:
                    msg = f'Header of {source.url} is truncated ({len(data)} bytes)'
                    raise TileIndexError(msg) from None
                if e.required > self.max_header_bytes:
                    msg = f'Header of {source.url} exceeds {self.max_header_bytes} bytes'
                    raise TileIndexError(msg) from None
                length = min(self.max_header_bytes, max(length * 2, e.required))
                logger.debug('Refetching header of %s with %d bytes', source.url, length)
                continue
            logger.info('Loaded tile index of %s: %d tiles', source.url, len(index))
            return index
