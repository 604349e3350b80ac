"""SQLAlchemy ORM models for yams-sync."""

from yams_sync.models.base import Base
from yams_sync.models.checksum import ChecksumCacheEntry
from yams_sync.models.sync import LastSync, SyncError

__all__ = [
    "Base",
    "ChecksumCacheEntry",
    "LastSync",
    "SyncError",
]
