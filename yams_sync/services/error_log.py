"""Error-retry log: per-image failure counters, paginated for retry passes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from yams_sync.database import dialect_insert
from yams_sync.models.sync import SyncError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def pages_for(count: int, page_size: int) -> int:
    """Number of pages needed for ``count`` rows (ceiling division)."""
    if page_size < 1 or count <= 0:
        return 0
    return -(-count // page_size)


class ErrorLog:
    """Durable queue of images whose upload failed.

    Only entries with ``error_counter <= max_tolerance`` are returned by
    ``pages_count`` and ``page``; entries above the tolerance stay in the
    table but are never retried.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        page_size: int = 10,
    ) -> None:
        self._session_factory = session_factory
        self.page_size = page_size

    async def pages_count(self, max_tolerance: int) -> int:
        """Number of pages of retryable entries."""
        if self.page_size < 1:
            return 0
        stmt = select(func.count()).select_from(SyncError).where(
            SyncError.error_counter <= max_tolerance
        )
        async with self._session_factory() as session:
            count = (await session.execute(stmt)).scalar_one()
        return pages_for(int(count), self.page_size)

    async def page(self, n: int, max_tolerance: int) -> list[str]:
        """Names on page ``n`` (1-based), oldest entries first."""
        if n < 1 or self.page_size < 1:
            return []
        stmt = (
            select(SyncError.image_path)
            .where(SyncError.error_counter <= max_tolerance)
            .order_by(SyncError.sync_error_id)
            .limit(self.page_size)
            .offset(self.page_size * (n - 1))
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def add(self, image_name: str) -> None:
        """Mark a failure: insert with counter 0, or increment an existing counter."""
        async with self._session_factory() as session:
            insert = dialect_insert(session)
            stmt = insert(SyncError).values(image_path=image_name, error_counter=0)
            stmt = stmt.on_conflict_do_update(
                index_elements=[SyncError.image_path],
                set_={"error_counter": SyncError.error_counter + 1},
            )
            await session.execute(stmt)
            await session.commit()

    async def set_counter(self, image_name: str, value: int) -> None:
        """Insert or overwrite the counter for ``image_name``."""
        async with self._session_factory() as session:
            insert = dialect_insert(session)
            stmt = insert(SyncError).values(image_path=image_name, error_counter=value)
            stmt = stmt.on_conflict_do_update(
                index_elements=[SyncError.image_path],
                set_={"error_counter": value},
            )
            await session.execute(stmt)
            await session.commit()

    async def remove(self, image_name: str) -> None:
        """Delete the mark for ``image_name``."""
        async with self._session_factory() as session:
            await session.execute(delete(SyncError).where(SyncError.image_path == image_name))
            await session.commit()

    async def counter(self, image_name: str) -> int | None:
        """Current counter for ``image_name``, or None when unmarked."""
        stmt = select(SyncError.error_counter).where(SyncError.image_path == image_name)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()
