"""Sync engine: retry pass, forward pass, worker pool and watermark commit."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from yams_sync.exceptions import (
    DuplicateError,
    ImageListReadError,
    ImageNotFoundError,
    ImageReadError,
    YamsError,
)
from yams_sync.services.datetime_service import DEFAULT_LAYOUT, format_layout
from yams_sync.services.local_store import parse_image_list_line
from yams_sync.services.stats import ImageOutcome, SyncStats

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime
    from pathlib import Path
    from types import TracebackType

    from yams_sync.schemas.image import Image
    from yams_sync.schemas.remote import RemoteObject
    from yams_sync.services.checksum_cache import ChecksumCache
    from yams_sync.services.error_log import ErrorLog
    from yams_sync.services.local_store import LocalImageStore
    from yams_sync.services.remote_store import RemoteStore
    from yams_sync.services.watermark import Watermark

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class WorkerPool(Generic[T]):
    """Fixed set of worker tasks fed through one bounded queue.

    Leaving the ``async with`` block closes the queue and waits for every
    worker to finish, so all dispatched items are handled before it returns.
    """

    def __init__(
        self, size: int, handler: Callable[[T], Awaitable[Any]], name: str = "pool"
    ) -> None:
        self.size = max(1, size)
        self.name = name
        self._handler = handler
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.size)
        self._workers: list[asyncio.Task[None]] = []

    async def __aenter__(self) -> WorkerPool[T]:
        self._workers = [
            asyncio.create_task(self._work(i), name=f"{self.name}-{i}") for i in range(self.size)
        ]
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if isinstance(exc, asyncio.CancelledError):
            for worker in self._workers:
                worker.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)
            return
        for _ in self._workers:
            await self._queue.put(_CLOSED)
        await asyncio.gather(*self._workers)

    async def dispatch(self, item: T) -> None:
        """Queue ``item``, waiting while every worker is busy."""
        await self._queue.put(item)

    async def _work(self, worker_id: int) -> None:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            try:
                await self._handler(item)
            except Exception:
                logger.exception("%s worker %d failed handling %r", self.name, worker_id, item)


@dataclass
class SyncResult:
    """Outcome of a full run."""

    retry: SyncStats = field(default_factory=lambda: SyncStats("retry"))
    forward: SyncStats = field(default_factory=lambda: SyncStats("forward"))
    watermark: datetime | None = None


class SyncEngine:
    """Uploads local images to the remote bucket and tracks progress.

    A run is a retry pass over the error log followed by a forward pass over
    the image list. The passes never overlap. The watermark committed at the
    end is the newest timestamp dispatched in the forward pass.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalImageStore,
        error_log: ErrorLog,
        watermark: Watermark,
        checksum_cache: ChecksumCache,
        *,
        checksum_ttl: float = 0,
        date_layout: str = DEFAULT_LAYOUT,
        max_retry_pages: int = 100,
        shutdown: asyncio.Event | None = None,
    ) -> None:
        self.remote = remote
        self.local = local
        self.error_log = error_log
        self.watermark = watermark
        self.checksum_cache = checksum_cache
        self.checksum_ttl = checksum_ttl
        self.date_layout = date_layout
        self.max_retry_pages = max_retry_pages
        self.shutdown = shutdown

    def worker_count(self, threads: int, limit: int | None = None) -> int:
        """Workers for a pass: bounded by the remote's concurrency and the limit."""
        count = min(threads, self.remote.max_concurrency)
        if limit is not None:
            count = min(count, limit)
        return max(1, count)

    async def run(
        self,
        image_list_path: Path,
        *,
        limit: int,
        threads: int,
        tolerance: int,
    ) -> SyncResult:
        """Run the retry pass, then the forward pass."""
        result = SyncResult()
        result.retry = await self.retry_pass(threads=threads, tolerance=tolerance)
        if self.shutdown is not None and self.shutdown.is_set():
            logger.warning("Shutdown requested, skipping forward pass")
            return result
        result.forward, result.watermark = await self.forward_pass(
            image_list_path, limit=limit, threads=threads
        )
        return result

    async def retry_pass(self, *, threads: int, tolerance: int) -> SyncStats:
        """Re-upload images recorded in the error log within ``tolerance``."""
        stats = SyncStats("retry")
        n_pages = min(await self.error_log.pages_count(tolerance), self.max_retry_pages)
        # Read every page first: workers remove marks, which would shift later offsets.
        names: list[str] = []
        for page in range(1, n_pages + 1):
            names.extend(await self.error_log.page(page, tolerance))
        logger.info("Retry pass: %d image(s) in %d page(s)", len(names), n_pages)

        handler = partial(self._handle, stats=stats, retry=True)
        async with WorkerPool(self.worker_count(threads), handler, name="retry") as pool:
            for name in names:
                image = await self._fetch_local(name, stats)
                if image is None:
                    continue
                await pool.dispatch(image)
                stats.dispatched += 1
        logger.info(stats.summary())
        return stats

    async def forward_pass(
        self, image_list_path: Path, *, limit: int, threads: int
    ) -> tuple[SyncStats, datetime | None]:
        """Upload images listed after the watermark and advance it.

        Returns the pass stats and the committed watermark (None when it did
        not move). Raises OSError when the image list cannot be opened and
        ImageListReadError when reading it fails part way.
        """
        stats = SyncStats("forward")
        scanner = self.local.open_image_list(image_list_path)
        with scanner:
            mark = await self.watermark.current()
            logger.info("Forward pass from watermark %s", format_layout(mark, self.date_layout))
            latest: datetime | None = None

            handler = partial(self._handle, stats=stats, retry=False)
            async with WorkerPool(
                self.worker_count(threads, limit), handler, name="forward"
            ) as pool:
                while stats.dispatched < limit and scanner.scan():
                    parsed = parse_image_list_line(scanner.text(), self.date_layout)
                    if parsed is None:
                        continue
                    ts, name = parsed
                    if ts <= mark:
                        continue
                    image = await self._fetch_local(name, stats)
                    if image is None:
                        continue
                    await pool.dispatch(image)
                    stats.dispatched += 1
                    if latest is None or ts > latest:
                        latest = ts
        logger.info(stats.summary())

        scan_error = scanner.err()
        if scan_error is not None:
            raise ImageListReadError(
                f"Error reading image list {image_list_path}: {scan_error}"
            ) from scan_error

        if latest is None or latest <= mark:
            return stats, None
        await self.watermark.append(format_layout(latest, self.date_layout))
        return stats, latest

    async def process_one(self, image: Image, *, retry: bool = False) -> ImageOutcome:
        """Upload one image, reconciling name conflicts. Never raises remote errors."""
        name = image.name
        cached = await self._cached_checksum(name)
        if cached == image.checksum:
            self._log_outcome(image, ImageOutcome.SKIPPED)
            return ImageOutcome.SKIPPED

        error: Exception | None = None
        try:
            await self.remote.put(image)
        except DuplicateError:
            outcome, error = await self._reconcile_duplicate(image)
        except YamsError as exc:
            error = exc
            await self._mark_error(self.error_log.add, name)
            outcome = ImageOutcome.FAILED_UPLOAD
        else:
            await self._mark_error(self.error_log.remove, name)
            await self._remember_checksum(image)
            outcome = ImageOutcome.RECOVERED if retry else ImageOutcome.SENT
        self._log_outcome(image, outcome, error)
        return outcome

    async def _reconcile_duplicate(
        self, image: Image
    ) -> tuple[ImageOutcome, Exception | None]:
        name = image.name
        try:
            remote_md5 = await self.remote.head(name)
        except YamsError as exc:
            await self._mark_error(self.error_log.add, name)
            return ImageOutcome.FAILED_UPLOAD, exc

        if not remote_md5:
            await self._mark_error(self.error_log.remove, name)
            return ImageOutcome.DUPLICATED, None

        if remote_md5 != image.checksum:
            # Same name, different content: drop the remote copy and retry next run.
            try:
                await self.remote.delete(name, force=True)
            except YamsError as exc:
                await self._mark_error(self.error_log.add, name)
                return ImageOutcome.FAILED_UPLOAD, exc
            await self._mark_error(partial(self.error_log.set_counter, value=0), name)
            return ImageOutcome.CONFLICTIVE_NAME, None

        await self._mark_error(self.error_log.remove, name)
        await self._remember_checksum(image)
        return ImageOutcome.DUPLICATED, None

    async def _handle(self, image: Image, *, stats: SyncStats, retry: bool) -> None:
        stats.record(await self.process_one(image, retry=retry))

    async def _fetch_local(self, name: str, stats: SyncStats) -> Image | None:
        try:
            return await self.local.get(name)
        except ImageNotFoundError as exc:
            logger.warning("image=%s outcome=%s error=%s", name, ImageOutcome.NOT_FOUND, exc)
            stats.record(ImageOutcome.NOT_FOUND)
        except ImageReadError as exc:
            logger.warning("image=%s outcome=%s error=%s", name, ImageOutcome.READ_ERROR, exc)
            stats.record(ImageOutcome.READ_ERROR)
        return None

    async def _cached_checksum(self, name: str) -> str | None:
        try:
            return await self.checksum_cache.get(name)
        except SQLAlchemyError as exc:
            logger.error("Checksum cache lookup failed for %s: %s", name, exc)
            return None

    async def _remember_checksum(self, image: Image) -> None:
        try:
            await self.checksum_cache.set(image.name, image.checksum, self.checksum_ttl)
        except SQLAlchemyError as exc:
            logger.error("Checksum cache update failed for %s: %s", image.name, exc)

    async def _mark_error(self, op: Callable[[str], Awaitable[None]], name: str) -> None:
        try:
            await op(name)
        except SQLAlchemyError as exc:
            logger.error("Error log update failed for %s: %s", name, exc)

    @staticmethod
    def _log_outcome(
        image: Image, outcome: ImageOutcome, error: Exception | None = None
    ) -> None:
        if error is None:
            logger.info(
                "image=%s outcome=%s checksum=%s size=%d",
                image.name,
                outcome,
                image.checksum,
                image.metadata.size,
            )
        else:
            logger.warning(
                "image=%s outcome=%s checksum=%s error=%s",
                image.name,
                outcome,
                image.checksum,
                error,
            )

    async def list_remote(self) -> list[RemoteObject]:
        """Objects currently stored in the bucket."""
        return await self.remote.list_objects()

    async def delete(self, image_name: str) -> None:
        """Force-delete one remote object and forget its local sync state."""
        await self.remote.delete(image_name, force=True)
        try:
            await self.checksum_cache.delete(image_name)
        except SQLAlchemyError as exc:
            logger.error("Checksum cache cleanup failed for %s: %s", image_name, exc)
        await self._mark_error(self.error_log.remove, image_name)
        logger.info("Deleted remote object %s", image_name)

    async def delete_all(self, threads: int) -> int:
        """Delete every object in the bucket. Returns how many were deleted."""
        objects = await self.remote.list_objects()
        deleted = 0

        async def delete_one(obj: RemoteObject) -> None:
            nonlocal deleted
            try:
                await self.delete(obj.id)
            except YamsError as exc:
                logger.error("Failed to delete remote object %s: %s", obj.id, exc)
                return
            deleted += 1

        async with WorkerPool(self.worker_count(threads), delete_one, name="delete") as pool:
            for obj in objects:
                await pool.dispatch(obj)
        logger.info("Deleted %d of %d remote object(s)", deleted, len(objects))
        return deleted

    async def reset_watermark(self) -> datetime | None:
        """Drop the newest watermark so the next run starts from the previous one."""
        return await self.watermark.reset()

    async def watermark_history(self, limit: int | None = None) -> list[str]:
        return await self.watermark.history(limit)
