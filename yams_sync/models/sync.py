"""Error-retry log and last-sync watermark models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from yams_sync.models.base import Base


class SyncError(Base):
    """Failure counter for one image that must be retried on a later run."""

    __tablename__ = "sync_error"

    sync_error_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    image_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    error_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LastSync(Base):
    """One synchronization watermark. The newest row is the current value."""

    __tablename__ = "last_sync"

    last_sync_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    last_sync_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
