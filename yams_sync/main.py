"""Component wiring: builds a SyncEngine from Settings."""

from __future__ import annotations

import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING

from yams_sync.database import create_engine, ensure_tables
from yams_sync.services.checksum_cache import ChecksumCache
from yams_sync.services.circuit_breaker import CircuitBreaker
from yams_sync.services.error_log import ErrorLog
from yams_sync.services.http_transport import HTTPTransport
from yams_sync.services.local_store import LocalImageStore
from yams_sync.services.remote_store import RemoteStore
from yams_sync.services.signer import JWTSigner
from yams_sync.services.sync_engine import SyncEngine
from yams_sync.services.watermark import Watermark

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncGenerator

    import httpx

    from yams_sync.config import Settings

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def open_engine(
    settings: Settings,
    *,
    shutdown: asyncio.Event | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncGenerator[SyncEngine, None]:
    """Build every component from ``settings`` and yield the sync engine.

    Resources are released in reverse order of acquisition on exit.
    ``http_transport`` replaces the network layer of the HTTP client.
    """
    settings.validate_runtime()
    signer = JWTSigner(settings.yams_private_key)

    async with AsyncExitStack() as stack:
        engine, session_factory = create_engine(settings)
        stack.push_async_callback(engine.dispose)
        await ensure_tables(engine)

        breaker = CircuitBreaker(
            settings.circuit_breaker_name,
            max_consecutive_failures=settings.circuit_breaker_consecutive_failure,
            max_failure_ratio=settings.circuit_breaker_failure_ratio,
            open_timeout=settings.circuit_breaker_timeout,
            counter_reset_interval=settings.circuit_breaker_interval,
        )
        transport = HTTPTransport(
            settings.yams_mgmt_url,
            breaker,
            timeout=settings.yams_timeout,
            proxy=settings.proxy_url,
            retry_delay=settings.circuit_breaker_retry_delay,
            transport=http_transport,
        )
        stack.push_async_callback(transport.aclose)
        if settings.proxy_url:
            logger.info("Routing remote traffic through proxy %s", settings.proxy_url)

        local = LocalImageStore(settings.images_path)
        remote = RemoteStore(
            transport,
            signer,
            local,
            access_key_id=settings.yams_access_key_id,
            tenant_id=settings.yams_tenant_id,
            domain_id=settings.yams_domain_id,
            bucket_id=settings.yams_bucket_id,
            max_concurrency=settings.yams_max_concurrency,
        )
        checksum_cache = ChecksumCache(session_factory, prefix=settings.checksum_cache_prefix)
        purged = await checksum_cache.purge_expired()
        if purged:
            logger.info("Purged %d expired checksum cache entries", purged)

        yield SyncEngine(
            remote,
            local,
            ErrorLog(session_factory, page_size=settings.errors_max_results_per_page),
            Watermark(
                session_factory,
                settings.watermark_default,
                layout=settings.images_date_layout,
            ),
            checksum_cache,
            checksum_ttl=settings.checksum_cache_ttl_seconds,
            date_layout=settings.images_date_layout,
            max_retry_pages=settings.errors_max_pages,
            shutdown=shutdown,
        )
