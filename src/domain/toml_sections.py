"""Mapping layer between flat OfflineSettings fields and sectioned TOML format.

OfflineSettings remains a flat Pydantic model. This module provides two functions:
- flat_to_sectioned(): flat dict → sectioned dict (for TOML save)
- sectioned_to_flat(): sectioned dict → flat dict (for TOML load)

List fields (tile_sources, mog_sources) stay at the top level as arrays of tables.
"""

from __future__ import annotations

# {section_name: {flat_field_name: short_name_in_toml}}
SECTION_MAP: dict[str, dict[str, str]] = {
    'storage': {
        'files_dir': 'files_dir',
    },
    'http': {
        'http_cache_enabled': 'cache_enabled',
        'http_cache_dir': 'cache_dir',
        'http_cache_expire_hours': 'cache_expire_hours',
        'http_timeout_s': 'timeout_s',
    },
    'geocoder': {
        'geocoder_enabled': 'enabled',
        'geocoder_url': 'url',
        'geocoder_language': 'language',
        'geocoder_timeout_s': 'timeout_s',
    },
}

# Reverse index: flat_field → (section, short_name)
_FLAT_TO_SECTION: dict[str, tuple[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    for _flat, _short in _fields.items():
        _FLAT_TO_SECTION[_flat] = (_section, _short)

# Reverse index: (section, short_name) → flat_field
_SECTION_TO_FLAT: dict[str, dict[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    _SECTION_TO_FLAT[_section] = {v: k for k, v in _fields.items()}


def flat_to_sectioned(flat: dict) -> dict:
    """Convert flat OfflineSettings dict to sectioned dict for TOML output.

    None values are dropped, TOML has no null.
    """
    result: dict = {}
    for key, value in flat.items():
        if value is None:
            continue
        if key in _FLAT_TO_SECTION:
            section, short_name = _FLAT_TO_SECTION[key]
            result.setdefault(section, {})[short_name] = value
        else:
            result[key] = value
    return result


def sectioned_to_flat(data: dict) -> dict:
    """Convert sectioned TOML dict to flat dict for OfflineSettings validation."""
    flat: dict = {}
    for key, value in data.items():
        if isinstance(value, dict) and key in _SECTION_TO_FLAT:
            # Known section: expand short names to flat names
            mapping = _SECTION_TO_FLAT[key]
            for short_name, field_value in value.items():
                flat_name = mapping.get(short_name, short_name)
                flat[flat_name] = field_value
        elif isinstance(value, dict):
            # Unknown section: pass through keys as-is
            flat.update(value)
        else:
            # Top-level key or array of tables
            flat[key] = value
    return flat
