"""Утилиты для определения каталога данных приложения."""

import os
import sys
from pathlib import Path

APP_DIR_NAME = 'OfflineTiles'


def is_portable_mode() -> bool:
    """
    Определяет, запущено ли приложение в portable режиме.

    Portable режим активируется, если имя исполняемого файла содержит '_portable'.

    Returns:
        bool: True если приложение в portable режиме, иначе False

    """
    exe_name = Path(sys.argv[0]).name.lower()
    return '_portable' in exe_name


def get_app_dir() -> Path:
    """Возвращает директорию приложения (где находится исполняемый файл)."""
    return Path(sys.argv[0]).resolve().parent


def get_portable_path(subdir: str) -> Path:
    """
    Возвращает путь к поддиректории для portable режима.

    В portable режиме все данные хранятся относительно исполняемого файла:
    - data/ - тайлы и база офлайн-областей
    - cache/ - HTTP-кэш заголовков
    - configs/ - профили
    - logs/ - лог-файлы

    Args:
        subdir: Имя поддиректории

    Returns:
        Path: Полный путь к поддиректории

    """
    return get_app_dir() / subdir


def get_default_files_dir() -> Path:
    """Корень локального хранилища (тайлы и база областей)."""
    if is_portable_mode():
        return get_portable_path('data')
    local = os.getenv('LOCALAPPDATA') or os.getenv('XDG_DATA_HOME')
    if local:
        return (Path(local) / APP_DIR_NAME).resolve()
    return (Path.home() / f'.{APP_DIR_NAME.lower()}').resolve()
