"""Checksum cache model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from yams_sync.models.base import Base


class ChecksumCacheEntry(Base):
    """Last MD5 known to be stored remotely for an image."""

    __tablename__ = "checksum_cache"

    cache_key: Mapped[str] = mapped_column(Text, primary_key=True)
    checksum: Mapped[str] = mapped_column(String(32), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
