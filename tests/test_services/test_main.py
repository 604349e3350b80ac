"""Tests for component wiring and logging setup."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

import httpx
import pytest

from yams_sync.config import Settings
from yams_sync.exceptions import SignerError
from yams_sync.main import configure_logging, open_engine
from yams_sync.services.stats import ImageOutcome

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from tests.conftest import FakeYams


def _settings(tmp_path: Path, key_path: Path, images_root: Path) -> Settings:
    return Settings(
        _env_file=None,
        yams_mgmt_url="https://yams.test/api/v1",
        yams_access_key_id="access-key-1",
        yams_tenant_id="tenant-1",
        yams_domain_id="domain-1",
        yams_bucket_id="bucket-1",
        yams_private_key=key_path,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'state' / 'sync.db'}",
        images_path=images_root,
        last_sync_default_date="2015-12-31",
        circuit_breaker_retry_delay=0.0,
    )


class TestOpenEngine:
    @pytest.mark.asyncio
    async def test_runs_a_sync_end_to_end(
        self,
        tmp_path: Path,
        rsa_key_path: Path,
        images_root: Path,
        yams: FakeYams,
        write_image: Callable[[str, bytes], Path],
    ) -> None:
        settings = _settings(tmp_path, rsa_key_path, images_root)
        write_image("a.jpg", b"hello")
        image_list = tmp_path / "images.txt"
        image_list.write_text("20250101T000001 a.jpg\n", encoding="utf-8")

        async with open_engine(settings, http_transport=httpx.MockTransport(yams)) as engine:
            assert await engine.watermark.current() == datetime(2015, 12, 31)
            result = await engine.run(image_list, limit=10, threads=5, tolerance=3)
            history = await engine.watermark_history()

        assert result.forward[ImageOutcome.SENT] == 1
        assert history == ["20250101T000001"]
        assert yams.objects == {"a.jpg": b"hello"}
        assert (tmp_path / "state" / "sync.db").exists()

    @pytest.mark.asyncio
    async def test_state_persists_between_runs(
        self,
        tmp_path: Path,
        rsa_key_path: Path,
        images_root: Path,
        yams: FakeYams,
    ) -> None:
        settings = _settings(tmp_path, rsa_key_path, images_root)
        async with open_engine(settings, http_transport=httpx.MockTransport(yams)) as engine:
            await engine.error_log.add("a.jpg")
            await engine.watermark.append("20240101T000000")

        async with open_engine(settings, http_transport=httpx.MockTransport(yams)) as engine:
            assert await engine.error_log.counter("a.jpg") == 0
            assert await engine.watermark.current() == datetime(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_missing_configuration_fails_before_connecting(self, tmp_path: Path) -> None:
        settings = Settings(_env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path}/x.db")
        with pytest.raises(ValueError, match="Missing required configuration"):
            async with open_engine(settings):
                pass
        assert not (tmp_path / "x.db").exists()

    @pytest.mark.asyncio
    async def test_missing_key_fails(
        self, tmp_path: Path, images_root: Path
    ) -> None:
        settings = _settings(tmp_path, tmp_path / "missing.rsa", images_root)
        with pytest.raises(SignerError):
            async with open_engine(settings):
                pass


class TestConfigureLogging:
    def test_quiets_http_and_sql_loggers(self) -> None:
        configure_logging(debug=False)
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_debug_enables_sql_logging(self) -> None:
        configure_logging(debug=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO
