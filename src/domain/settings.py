from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, field_validator

from domain.models import Bounds, TileSource, ZoomRange
from shared.constants import (
    GEOCODER_TIMEOUT_S,
    HTTP_CACHE_ENABLED,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_TIMEOUT_TOTAL,
    NOMINATIM_REVERSE_URL,
    OFFLINE_AREAS_DB_NAME,
    TILES_SUBDIR,
)
from shared.portable import get_default_files_dir


class MogSourceConfig(BaseModel):
    """
    Шаблон удалённого COG-источника.

    Шаблон с {x}/{y} разворачивается в отдельные файлы на уровне
    zoom_range.min_zoom; без плейсхолдеров описывает один файл,
    покрывающий весь мир.
    """

    url_template: str
    zoom_range: ZoomRange
    # Ограничение области, для которой шаблон имеет файлы
    bounds: Bounds | None = None

    @property
    def is_template(self) -> bool:
        return '{x}' in self.url_template or '{y}' in self.url_template


class OfflineSettings(BaseModel):
    """Настройки офлайн-кэша, загружаемые из TOML-профиля."""

    model_config = {
        'extra': 'ignore',
    }

    # Корень локального хранилища; None - каталог данных пользователя
    files_dir: str | None = None

    # Источники тайлов активного проекта (первый MOG_COLLECTION используется для загрузки)
    tile_sources: list[TileSource] = []

    # Явная раскладка COG-файлов; None - раскладка по умолчанию от URL коллекции
    mog_sources: list[MogSourceConfig] | None = None

    # Кэш HTTP-ответов заголовков
    http_cache_enabled: bool = HTTP_CACHE_ENABLED
    http_cache_dir: str | None = None
    http_cache_expire_hours: int = HTTP_CACHE_EXPIRE_HOURS
    http_timeout_s: float = HTTP_TIMEOUT_TOTAL

    # Геокодер для имён областей
    geocoder_enabled: bool = True
    geocoder_url: str = NOMINATIM_REVERSE_URL
    geocoder_language: str | None = None
    geocoder_timeout_s: float = GEOCODER_TIMEOUT_S

    @field_validator('http_cache_expire_hours')
    @classmethod
    def validate_expire_hours(cls, v: int) -> int:
        v = int(v)
        if v < 0:
            msg = 'http_cache_expire_hours не может быть отрицательным'
            raise ValueError(msg)
        return v

    @field_validator('http_timeout_s', 'geocoder_timeout_s')
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        v = float(v)
        if v <= 0:
            msg = 'Таймаут должен быть положительным'
            raise ValueError(msg)
        return v

    def get_files_dir(self) -> Path:
        if self.files_dir:
            return Path(self.files_dir).expanduser()
        return get_default_files_dir()

    @property
    def tiles_root(self) -> Path:
        return self.get_files_dir() / TILES_SUBDIR

    @property
    def database_path(self) -> Path:
        return self.get_files_dir() / OFFLINE_AREAS_DB_NAME
