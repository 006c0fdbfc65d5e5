"""HTTP client infrastructure."""
from infrastructure.http.client import (
    check_range_status,
    fetch_range,
    make_http_session,
    range_header,
    resolve_cache_dir,
)

__all__ = [
    'check_range_status',
    'fetch_range',
    'make_http_session',
    'range_header',
    'resolve_cache_dir',
]
