import logging
import os
from pathlib import Path

import tomlkit

from domain.settings import OfflineSettings
from domain.toml_sections import flat_to_sectioned, sectioned_to_flat
from shared.portable import APP_DIR_NAME, get_portable_path, is_portable_mode

logger = logging.getLogger(__name__)


def _user_profiles_dir() -> Path:
    """
    Determine profiles directory.

    1) Portable mode: <app_dir>/configs/profiles.
    2) If <project_root>/configs/profiles exists, use it (run-from-repo setups).
    3) Otherwise, fall back to the user config directory:
       %APPDATA%/OfflineTiles/configs/profiles or ~/.config/OfflineTiles/configs/profiles.
    """
    if is_portable_mode():
        return get_portable_path('configs/profiles')

    project_root = Path(__file__).resolve().parent.parent
    local_profiles = project_root / 'configs' / 'profiles'
    if local_profiles.exists():
        return local_profiles

    base = os.getenv('APPDATA') or os.getenv('XDG_CONFIG_HOME')
    return (
        Path(base or (Path.home() / '.config'))
        / APP_DIR_NAME
        / 'configs'
        / 'profiles'
    )


def ensure_profiles_dir() -> Path:
    profiles_dir = _user_profiles_dir()
    profiles_dir.mkdir(parents=True, exist_ok=True)
    return profiles_dir


def list_profiles() -> list[str]:
    """Список имён профилей без расширения."""
    folder = ensure_profiles_dir()
    return sorted(p.stem for p in folder.glob('*.toml') if p.is_file())


def profile_path(name: str) -> Path:
    """Путь к файлу профиля по имени."""
    return ensure_profiles_dir() / f'{name}.toml'


def load_profile(name_or_path: str) -> OfflineSettings:
    """
    Загрузка и валидация профиля TOML -> OfflineSettings.

    Поддерживает как имя профиля (без .toml) из каталога profiles,
    так и абсолютный/относительный путь до TOML файла.
    """
    p = Path(name_or_path)
    path = (
        p if p.suffix.lower() == '.toml' and p.exists() else profile_path(name_or_path)
    )
    if not path.exists():
        msg = f'Profile not found: {path}'
        raise FileNotFoundError(msg)
    text = path.read_text(encoding='utf-8')
    data = tomlkit.parse(text).unwrap()
    settings = OfflineSettings.model_validate(sectioned_to_flat(data))
    logger.info(
        'Profile %s loaded: files_dir=%s, %d tile source(s)',
        path,
        settings.get_files_dir(),
        len(settings.tile_sources),
    )
    return settings


def save_profile(name: str, settings: OfflineSettings) -> Path:
    """Сохранение профиля в TOML (без атомарности и бэкапов)."""
    path = profile_path(name)
    data = settings.model_dump(mode='json', exclude_none=True)
    text = tomlkit.dumps(flat_to_sectioned(data))
    path.write_text(text, encoding='utf-8')
    return path


def delete_profile(name: str) -> None:
    """Удаление файла профиля, если он существует."""
    path = profile_path(name)
    if path.exists():
        path.unlink()
