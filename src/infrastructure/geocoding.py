"""Reverse geocoding used to name offline areas."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import aiohttp

from shared.constants import HTTP_OK, NOMINATIM_REVERSE_URL, NOMINATIM_ZOOM
from shared.errors import TransportError

if TYPE_CHECKING:
    from domain.models import Bounds

logger = logging.getLogger(__name__)

# Поля адреса Nominatim в порядке от частного к общему
_LOCALITY_KEYS = ('city', 'town', 'village', 'hamlet', 'municipality', 'suburb')
_REGION_KEYS = ('state', 'region', 'county')


class AreaNameResolver(Protocol):
    async def get_area_name(self, bounds: Bounds) -> str: ...


def format_address(address: dict) -> str:
    """«Населённый пункт, регион, страна» из адреса Nominatim; пустые части опускаются."""
    parts: list[str] = []
    for keys in (_LOCALITY_KEYS, _REGION_KEYS, ('country',)):
        value = next((address[k] for k in keys if address.get(k)), None)
        if value and value not in parts:
            parts.append(value)
    return ', '.join(parts)


class NominatimGeocoder:
    """Имя области по центру bounds через обратное геокодирование Nominatim."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        url: str = NOMINATIM_REVERSE_URL,
        language: str | None = None,
    ) -> None:
        self._session = session
        self.url = url
        self.language = language

    async def get_area_name(self, bounds: Bounds) -> str:
        lat, lng = bounds.center
        params = {
            'lat': f'{lat:.6f}',
            'lon': f'{lng:.6f}',
            'format': 'jsonv2',
            'zoom': str(NOMINATIM_ZOOM),
            'addressdetails': '1',
        }
        if self.language:
            params['accept-language'] = self.language
        try:
            async with self._session.get(self.url, params=params) as resp:
                if resp.status != HTTP_OK:
                    msg = f'Reverse geocoding failed (HTTP {resp.status})'
                    raise TransportError(msg, url=self.url, status=resp.status)
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            msg = f'Reverse geocoding failed: {e}'
            raise TransportError(msg, url=self.url) from e

        name = format_address(payload.get('address') or {})
        if not name:
            name = payload.get('name') or ''
        logger.debug('Reverse geocoded (%.5f, %.5f) -> %r', lat, lng, name)
        return name
