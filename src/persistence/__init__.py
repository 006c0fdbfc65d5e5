"""Local persistence of offline areas."""
from persistence.area_store import OfflineAreaStore, SqliteOfflineAreaStore

__all__ = [
    'OfflineAreaStore',
    'SqliteOfflineAreaStore',
]
