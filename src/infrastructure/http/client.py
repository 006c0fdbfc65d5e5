from __future__ import annotations

import contextlib
import os
import sqlite3
import ssl
from datetime import timedelta
from pathlib import Path

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_CACHE_DIR,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_OK,
    HTTP_PARTIAL_CONTENT,
    HTTP_TIMEOUT_CONNECT,
    HTTP_TIMEOUT_SOCK_READ,
    HTTP_TIMEOUT_TOTAL,
    USER_AGENT,
)
from shared.errors import TransportError
from shared.portable import APP_DIR_NAME, get_portable_path, is_portable_mode


def resolve_cache_dir() -> Path:
    # Portable режим: кэш в папке приложения
    if is_portable_mode():
        return get_portable_path('cache/http')

    raw_dir = Path(HTTP_CACHE_DIR)
    if raw_dir.is_absolute():
        return raw_dir

    local = os.getenv('LOCALAPPDATA') or os.getenv('XDG_CACHE_HOME')
    if local:
        return (Path(local) / APP_DIR_NAME / raw_dir).resolve()
    return (Path.home() / f'.{APP_DIR_NAME.lower()}' / raw_dir).resolve()


def make_timeout(total_s: float = HTTP_TIMEOUT_TOTAL) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(
        total=total_s,
        connect=HTTP_TIMEOUT_CONNECT,
        sock_read=HTTP_TIMEOUT_SOCK_READ,
    )


def make_http_session(
    cache_dir: Path | None,
    *,
    timeout_s: float = HTTP_TIMEOUT_TOTAL,
    expire_hours: int = HTTP_CACHE_EXPIRE_HOURS,
) -> aiohttp.ClientSession:
    """
    Create an HTTP session for range reads.

    With cache_dir, responses (including 206 partial content, keyed by the
    Range header) are persisted in SQLite; this is meant for header reads.
    Without it a plain aiohttp session is returned.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    timeout = make_timeout(timeout_s)
    headers = {'User-Agent': USER_AGENT}

    if cache_dir is not None:
        cache_path = cache_dir / 'http_cache.sqlite'
        with contextlib.suppress(Exception):
            if not cache_path.exists():
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                with sqlite3.connect(cache_path) as _conn:
                    _conn.execute('PRAGMA journal_mode=WAL;')
        expire_td = timedelta(hours=max(0, int(expire_hours)))
        backend = SQLiteBackend(
            str(cache_path),
            expire_after=expire_td,
            allowed_codes=(HTTP_OK, HTTP_PARTIAL_CONTENT),
            include_headers=True,
        )
        return CachedSession(
            cache=backend,
            connector=connector,
            timeout=timeout,
            headers=headers,
        )
    return aiohttp.ClientSession(connector=connector, timeout=timeout, headers=headers)


def range_header(start: int, end: int) -> dict[str, str]:
    """Заголовок Range для полуинтервала [start, end)."""
    return {'Range': f'bytes={start}-{end - 1}'}


def check_range_status(status: int, url: str) -> None:
    if status not in (HTTP_OK, HTTP_PARTIAL_CONTENT):
        msg = f'Range request failed (HTTP {status}): {url}'
        raise TransportError(msg, url=url, status=status)


async def read_exactly_or_eof(content, length: int) -> bytes:
    """Читает до length байт из потока ответа; меньше - только при EOF."""
    parts: list[bytes] = []
    remaining = length
    while remaining > 0:
        chunk = await content.read(remaining)
        if not chunk:
            break
        parts.append(chunk)
        remaining -= len(chunk)
    return b''.join(parts)


async def fetch_range(
    session: aiohttp.ClientSession,
    url: str,
    start: int,
    end: int,
) -> bytes:
    """
    Read bytes [start, end) of a remote blob.

    A server ignoring Range (HTTP 200) is tolerated: the prefix is skipped
    and only the requested span is read. The result is shorter than
    requested only when the blob ends first.

    Raises:
        TransportError: on connection errors, timeouts or non-success status.
    """
    try:
        async with session.get(url, headers=range_header(start, end)) as resp:
            check_range_status(resp.status, url)
            if resp.status == HTTP_OK and start > 0:
                await read_exactly_or_eof(resp.content, start)
            return await read_exactly_or_eof(resp.content, end - start)
    except TransportError:
        raise
    except (aiohttp.ClientError, TimeoutError) as e:
        msg = f'Range request failed: {url}: {e}'
        raise TransportError(msg, url=url) from e
