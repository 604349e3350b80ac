"""Checksum cache: image name -> MD5 last confirmed on the remote, with expiry."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from yams_sync.database import dialect_insert
from yams_sync.models.checksum import ChecksumCacheEntry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


class ChecksumCache:
    """Database-backed cache used as a dedup hint before uploading.

    Keys are ``prefix + image_name``. A missing or expired entry reads as None.
    A non-positive TTL stores entries that never expire.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        prefix: str = "",
    ) -> None:
        self._session_factory = session_factory
        self.prefix = prefix

    def make_key(self, image_name: str) -> str:
        return self.prefix + image_name

    async def get(self, image_name: str) -> str | None:
        """Return the cached checksum, or None when missing or expired."""
        stmt = select(ChecksumCacheEntry).where(
            ChecksumCacheEntry.cache_key == self.make_key(image_name)
        )
        async with self._session_factory() as session:
            entry = (await session.execute(stmt)).scalar_one_or_none()
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= datetime.now():
            return None
        return entry.checksum

    async def set(self, image_name: str, checksum: str, ttl_seconds: float = 0) -> None:
        """Store ``checksum`` for ``image_name``, replacing any previous entry."""
        expires_at = datetime.now() + timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None
        async with self._session_factory() as session:
            insert = dialect_insert(session)
            stmt = insert(ChecksumCacheEntry).values(
                cache_key=self.make_key(image_name),
                checksum=checksum,
                expires_at=expires_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ChecksumCacheEntry.cache_key],
                set_={"checksum": checksum, "expires_at": expires_at},
            )
            await session.execute(stmt)
            await session.commit()

    async def delete(self, image_name: str) -> None:
        """Drop the entry for ``image_name``."""
        async with self._session_factory() as session:
            await session.execute(
                delete(ChecksumCacheEntry).where(
                    ChecksumCacheEntry.cache_key == self.make_key(image_name)
                )
            )
            await session.commit()

    async def purge_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ChecksumCacheEntry).where(
                    ChecksumCacheEntry.expires_at.is_not(None),
                    ChecksumCacheEntry.expires_at <= datetime.now(),
                )
            )
            await session.commit()
        return int(result.rowcount or 0)  # type: ignore[attr-defined]
