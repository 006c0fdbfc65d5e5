"""Command-line entry point for the offline tile cache."""

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from collections.abc import AsyncIterator
from pathlib import Path

from domain.models import Bounds, TileSource
from domain.settings import OfflineSettings
from infrastructure.geocoding import NominatimGeocoder
from infrastructure.http.client import make_http_session, resolve_cache_dir
from persistence.area_store import SqliteOfflineAreaStore
from profiles import load_profile
from services.offline_area_repository import OfflineAreaRepository
from services.tile_source_provider import StaticTileSourceProvider
from shared.constants import TileSourceType
from shared.errors import OfflineTilesError
from shared.portable import APP_DIR_NAME, get_portable_path, is_portable_mode
from shared.progress import ConsoleProgress, format_bytes
from tiles.index import TileIndexLoader

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> Path:
    """Configure application logging to stdout and a log file.

    Returns:
        Path of the log file.
    """
    if is_portable_mode():
        log_dir = get_portable_path('logs')
    else:
        base = os.getenv('LOCALAPPDATA') or os.getenv('XDG_STATE_HOME')
        log_dir = Path(base or Path.home() / '.local' / 'state') / APP_DIR_NAME / 'log'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / 'offline_tiles.log'

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(str(log_file), encoding='utf-8'),
        ],
    )
    return log_file


@contextlib.asynccontextmanager
async def open_repository(settings: OfflineSettings) -> AsyncIterator[OfflineAreaRepository]:
    """Wire the store, HTTP sessions and geocoder into a repository."""
    cache_dir = None
    if settings.http_cache_enabled:
        cache_dir = Path(settings.http_cache_dir) if settings.http_cache_dir else resolve_cache_dir()
    header_session = make_http_session(
        cache_dir,
        timeout_s=settings.http_timeout_s,
        expire_hours=settings.http_cache_expire_hours,
    )
    tile_session = make_http_session(None, timeout_s=settings.http_timeout_s)
    geocoder_session = make_http_session(None, timeout_s=settings.geocoder_timeout_s)
    store = SqliteOfflineAreaStore(settings.database_path)
    try:
        geocoder = None
        if settings.geocoder_enabled:
            geocoder = NominatimGeocoder(
                geocoder_session,
                url=settings.geocoder_url,
                language=settings.geocoder_language,
            )
        yield OfflineAreaRepository(
            store,
            StaticTileSourceProvider(settings.tile_sources),
            tiles_root=settings.tiles_root,
            index_loader=TileIndexLoader(header_session),
            session=tile_session,
            geocoder=geocoder,
            mog_sources=settings.mog_sources,
        )
    finally:
        store.close()
        await header_session.close()
        await tile_session.close()
        await geocoder_session.close()


def _bounds(values: list[float]) -> Bounds:
    south, west, north, east = values
    return Bounds(south=south, west=west, north=north, east=east)


async def _cmd_download(repo: OfflineAreaRepository, args: argparse.Namespace) -> int:
    bounds = _bounds(args.bounds)
    progress: ConsoleProgress | None = None
    try:
        async for done, total in repo.download_tiles(bounds):
            if progress is None:
                progress = ConsoleProgress(total, label='Download')
            progress.update(done, total)
    finally:
        if progress is not None:
            progress.close()
    if progress is None:
        print('No tiles available for the requested area')
    else:
        print(f'Downloaded {format_bytes(progress.done)}')
    return 0


async def _cmd_estimate(repo: OfflineAreaRepository, args: argparse.Namespace) -> int:
    bounds = _bounds(args.bounds)
    size = await repo.estimate_size_on_disk(bounds)
    hires = await repo.has_high_resolution_imagery(bounds)
    print(f'Estimated size: {format_bytes(size)}')
    print(f'High resolution imagery: {"yes" if hires else "no"}')
    return 0


async def _cmd_list(repo: OfflineAreaRepository, args: argparse.Namespace) -> int:
    areas = repo.store.get_all()
    if not areas:
        print('No offline areas')
    for area in areas:
        b = area.bounds
        print(
            f'{area.id}  {area.name}  [{b.south:.4f}, {b.west:.4f}, {b.north:.4f}, {b.east:.4f}]'
            f'  z{area.zoom_range.min_zoom}-{area.zoom_range.max_zoom}'
            f'  {len(area.tiles)} tiles  {format_bytes(repo.size_on_device(area))}'
        )
    return 0


async def _cmd_delete(repo: OfflineAreaRepository, args: argparse.Namespace) -> int:
    area = repo.get_offline_area(args.area_id)
    if area is None:
        print(f'Offline area not found: {args.area_id}')
        return 1
    result = await repo.remove_from_device(area)
    print(f'Removed {result.tiles_removed} tile(s), {result.dirs_removed} director(ies)')
    return 0


async def _cmd_sources(repo: OfflineAreaRepository, args: argparse.Namespace) -> int:
    for source in repo.local_tile_sources():
        print(f'{source.type.value}  {source.url}  ({len(source.clip_bounds)} clip bounds)')
    return 0


_COMMANDS = {
    'download': _cmd_download,
    'estimate': _cmd_estimate,
    'list': _cmd_list,
    'delete': _cmd_delete,
    'sources': _cmd_sources,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Offline map tile cache')
    parser.add_argument('--profile', help='Profile name or path to a TOML file')
    parser.add_argument('--files-dir', help='Local storage root (overrides profile)')
    parser.add_argument('--collection-url', help='MOG collection base URL (overrides profile)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    sub = parser.add_subparsers(dest='command', required=True)

    bounds_kw = {
        'nargs': 4,
        'type': float,
        'metavar': ('SOUTH', 'WEST', 'NORTH', 'EAST'),
        'required': True,
    }
    p = sub.add_parser('download', help='Download tiles of an area')
    p.add_argument('--bounds', **bounds_kw)
    p = sub.add_parser('estimate', help='Estimate download size of an area')
    p.add_argument('--bounds', **bounds_kw)
    sub.add_parser('list', help='List offline areas')
    p = sub.add_parser('delete', help='Delete an offline area and reclaim its tiles')
    p.add_argument('area_id')
    sub.add_parser('sources', help='Show locally servable tile sources')
    return parser


def load_settings(args: argparse.Namespace) -> OfflineSettings:
    settings = load_profile(args.profile) if args.profile else OfflineSettings()
    updates: dict = {}
    if args.files_dir:
        updates['files_dir'] = args.files_dir
    if args.collection_url:
        updates['tile_sources'] = [
            TileSource(url=args.collection_url, type=TileSourceType.MOG_COLLECTION)
        ]
    return settings.model_copy(update=updates) if updates else settings


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    async with open_repository(settings) as repo:
        return await _COMMANDS[args.command](repo, args)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.verbose)
    logger.info('Starting offline tile cache (log: %s)', log_file)
    try:
        return asyncio.run(run(args))
    except OfflineTilesError as e:
        logger.error('%s', e)
        return 2
    except (FileNotFoundError, ValueError) as e:
        logger.error('%s', e)
        return 2
    except KeyboardInterrupt:
        logger.info('Interrupted')
        return 130


if __name__ == '__main__':
    sys.exit(main())
