"""On-disk tile layout: {tiles_root}/{z}/{x}/{y}.jpg."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

from domain.models import TileCoordinate
from shared.constants import JPEG_EOI, JPEG_SOI, TILE_FILE_EXT

logger = logging.getLogger(__name__)


def tile_path(tiles_root: Path, coord: TileCoordinate) -> Path:
    return tiles_root / str(coord.zoom) / str(coord.x) / f'{coord.y}.{TILE_FILE_EXT}'


def local_tile_url(tiles_root: Path) -> str:
    """URL-шаблон локально обслуживаемых тайлов."""
    return f'file://{tiles_root}/{{z}}/{{x}}/{{y}}.{TILE_FILE_EXT}'


def write_tile_atomic(path: Path, data: bytes) -> None:
    """
    Write a tile via temp file + rename in the same directory.

    A concurrent reader sees either the old file, the new one or none.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


def build_jpeg(payload: bytes, jpeg_tables: bytes | None) -> bytes:
    """
    Make a standalone JPEG from a TIFF tile with shared tables.

    Tables end with EOI and the tile starts with SOI; both markers are dropped
    at the seam.
    """
    if not jpeg_tables:
        return payload
    tables = jpeg_tables[:-2] if jpeg_tables.endswith(JPEG_EOI) else jpeg_tables
    body = payload[2:] if payload.startswith(JPEG_SOI) else payload
    return tables + body


def delete_if_empty(directory: Path) -> bool:
    """Удаляет каталог, если он пуст. Возвращает True, если удалён."""
    try:
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()
            return True
    except OSError:
        logger.warning('Failed to remove directory %s', directory, exc_info=True)
    return False


def remove_tile(tiles_root: Path, coord: TileCoordinate) -> int:
    """
    Delete a tile file, then its x-level and z-level directories when empty.

    Returns the number of directories removed. A missing file is not an error;
    OSError from unlinking propagates.
    """
    path = tile_path(tiles_root, coord)
    path.unlink(missing_ok=True)
    removed = 0
    for directory in (path.parent, path.parent.parent):
        if delete_if_empty(directory):
            removed += 1
    return removed
