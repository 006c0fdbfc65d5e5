from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import aiohttp

from infrastructure.http.client import check_range_status, range_header
from shared.constants import HTTP_CHUNK_SIZE, HTTP_PARTIAL_CONTENT
from shared.errors import StorageError, TransportError
from tiles.storage import build_jpeg, tile_path, write_tile_atomic

if TYPE_CHECKING:
    from tiles.index import TileMetadata
    from tiles.planner import TileRequest

logger = logging.getLogger(__name__)


class TileDownloader:
    """
    Executes planned tile requests and stores tiles under dest_dir.

    Each TileRequest is one ranged GET. Tiles are cut out of the response
    stream as soon as their bytes arrive and written atomically to
    {dest_dir}/{z}/{x}/{y}.jpg.

    Usage:
        downloader = TileDownloader(session, tiles_root)
        async for n_bytes in downloader.download(requests):
            done += n_bytes
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        dest_dir: str | Path,
        *,
        chunk_size: int = HTTP_CHUNK_SIZE,
    ) -> None:
        self._session = session
        self.dest_dir = Path(dest_dir)
        self.chunk_size = chunk_size

    async def download(self, requests: Sequence[TileRequest]) -> AsyncIterator[int]:
        """
        Download all requests in order, yielding byte counts after each tile write.

        The sum of yielded values for a completed request equals its
        ``total_bytes``. Stopping iteration abandons the in-flight request;
        tiles written so far stay on disk.

        Raises:
            TransportError: network failure, bad status or short body.
            StorageError: a tile could not be written.
        """
        for n, request in enumerate(requests, start=1):
            logger.debug(
                'Request %d/%d: %s bytes %d-%d (%d tiles)',
                n,
                len(requests),
                request.url,
                *request.byte_range,
                len(request.tiles),
            )
            async with contextlib.aclosing(self._download_request(request)) as stream:
                async for n_bytes in stream:
                    yield n_bytes

    async def _download_request(self, request: TileRequest) -> AsyncIterator[int]:
        start, end = request.byte_range
        url = request.url
        pending = list(request.tiles)
        next_idx = 0
        covered_end = 0
        try:
            async with self._session.get(url, headers=range_header(start, end)) as resp:
                check_range_status(resp.status, url)
                # Сервер без поддержки Range отдаёт файл целиком
                buf_start = start if resp.status == HTTP_PARTIAL_CONTENT else 0
                buf = bytearray()
                async for chunk in resp.content.iter_chunked(self.chunk_size):
                    buf += chunk
                    buf_end = buf_start + len(buf)
                    while next_idx < len(pending) and pending[next_idx].end <= buf_end:
                        tile = pending[next_idx]
                        lo = tile.offset - buf_start
                        payload = bytes(buf[lo : lo + tile.byte_count])
                        await self._write_tile(tile, payload)
                        new_start = max(tile.offset, covered_end)
                        covered_end = max(covered_end, tile.end)
                        yield max(0, tile.end - new_start)
                        next_idx += 1
                        if next_idx < len(pending):
                            drop = pending[next_idx].offset - buf_start
                            if drop > 0:
                                del buf[:drop]
                                buf_start += drop
                    if next_idx >= len(pending):
                        break
                    # Префикс до первого нужного байта не храним
                    if buf_start < start:
                        drop = min(len(buf), start - buf_start)
                        del buf[:drop]
                        buf_start += drop
        except (TransportError, StorageError):
            raise
        except (aiohttp.ClientError, TimeoutError) as e:
            msg = f'Tile request failed: {url}: {e}'
            raise TransportError(msg, url=url) from e

        if next_idx < len(pending):
            msg = (
                f'Response for {url} ended early: '
                f'{len(pending) - next_idx} of {len(pending)} tiles missing'
            )
            raise TransportError(msg, url=url)

    async def _write_tile(self, tile: TileMetadata, payload: bytes) -> None:
        path = tile_path(self.dest_dir, tile.coordinate)
        data = build_jpeg(payload, tile.jpeg_tables)
        try:
            await asyncio.to_thread(write_tile_atomic, path, data)
        except OSError as e:
            msg = f'Failed to write tile {tile.coordinate}: {e}'
            raise StorageError(msg) from e
