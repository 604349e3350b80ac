"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from yams_sync.services.datetime_service import parse_datetime
from yams_sync.services.http_transport import normalize_proxy_url


class FileSecretsSource(PydanticBaseSettingsSource):
    """Read ``<VAR>_FILE`` environment variables as paths to secret files.

    The file content is used verbatim and wins over a plain ``<VAR>``.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        file_name = os.environ.get(f"{field_name.upper()}_FILE")
        if file_name is None:
            return None, field_name, False
        return Path(file_name).read_text(encoding="utf-8"), field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[key] = value
        return data


class Settings(BaseSettings):
    """yams-sync settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Remote bucket
    yams_mgmt_url: str = "https://mgmt-us-east-1-yams.schibsted.com/api/v1"
    yams_access_key_id: str = ""
    yams_tenant_id: str = ""
    yams_domain_id: str = ""
    yams_bucket_id: str = ""
    yams_private_key: Path = Path("writer-key.rsa")
    yams_max_concurrency: int = Field(default=100, ge=1)
    yams_timeout: float = Field(default=10.0, gt=0)

    # Database (error log, watermark, checksum cache)
    database_url: str = "sqlite+aiosqlite:///data/yams-sync.db"

    # Local images
    images_path: Path = Path("./images")
    images_date_layout: str = "%Y%m%dT%H%M%S"

    # Error log
    errors_max_retries_per_error: int = Field(default=3, ge=0)
    errors_max_results_per_page: int = Field(default=10, ge=1)
    errors_max_pages: int = Field(default=100, ge=0)

    # Watermark
    last_sync_default_date: str = "2015-12-31"

    # Checksum cache
    checksum_cache_prefix: str = ""
    checksum_cache_ttl_seconds: int = 0

    # Circuit breaker
    circuit_breaker_name: str = "HTTP_SEND"
    circuit_breaker_consecutive_failure: int = Field(default=10, ge=0)
    circuit_breaker_failure_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    circuit_breaker_timeout: float = Field(default=30.0, ge=0)
    circuit_breaker_interval: float = Field(default=30.0, ge=0)
    circuit_breaker_retry_delay: float = Field(default=1.0, ge=0)

    # SOCKS5 bandwidth proxy, disabled when empty
    bandwidth_proxy_host: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            FileSecretsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def watermark_default(self) -> datetime:
        """Watermark used when no synchronization has been recorded yet."""
        return parse_datetime(self.last_sync_default_date).replace(tzinfo=None)

    @property
    def proxy_url(self) -> str | None:
        """SOCKS5 proxy URL for the HTTP client, or None."""
        return normalize_proxy_url(self.bandwidth_proxy_host)

    def validate_runtime(self) -> None:
        """Validate settings required to talk to the remote bucket."""
        missing = [
            name
            for name in (
                "yams_access_key_id",
                "yams_tenant_id",
                "yams_domain_id",
                "yams_bucket_id",
            )
            if not getattr(self, name)
        ]
        if missing:
            joined = ", ".join(name.upper() for name in missing)
            raise ValueError(f"Missing required configuration: {joined}")
