"""Last-sync watermark: append-only history whose newest row is the current value."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from yams_sync.models.sync import LastSync
from yams_sync.services.datetime_service import DEFAULT_LAYOUT, format_layout, parse_layout

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class Watermark:
    """Synchronization date marks stored in the ``last_sync`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default: datetime,
        layout: str = DEFAULT_LAYOUT,
    ) -> None:
        self._session_factory = session_factory
        self.default = default
        self.layout = layout

    async def current(self) -> datetime:
        """Newest mark, or the configured default when none was recorded."""
        stmt = select(LastSync.last_sync_date).order_by(LastSync.last_sync_id.desc()).limit(1)
        async with self._session_factory() as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return self.default if value is None else value

    async def append(self, formatted: str) -> None:
        """Record a new mark given in the configured layout."""
        mark = parse_layout(formatted, self.layout)
        async with self._session_factory() as session:
            session.add(LastSync(last_sync_date=mark))
            await session.commit()
        logger.info("Watermark advanced to %s", formatted)

    async def reset(self) -> datetime | None:
        """Delete the newest mark only. Returns the removed value, if any."""
        async with self._session_factory() as session:
            stmt = select(LastSync).order_by(LastSync.last_sync_id.desc()).limit(1)
            newest = (await session.execute(stmt)).scalar_one_or_none()
            if newest is None:
                return None
            removed = newest.last_sync_date
            await session.delete(newest)
            await session.commit()
        logger.info("Watermark %s removed", format_layout(removed, self.layout))
        return removed

    async def history(self, limit: int | None = None) -> list[str]:
        """Recorded marks, newest first, formatted with the configured layout."""
        stmt = select(LastSync.last_sync_date).order_by(LastSync.last_sync_id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [format_layout(value, self.layout) for value in result.scalars().all()]
