"""Local image storage: ``<root>/<first two chars>/<name>`` files and the image list."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, TextIO

from yams_sync.exceptions import ImageNotFoundError, ImageReadError, InvalidImageNameError
from yams_sync.schemas.image import Image, ImageMetadata
from yams_sync.services.datetime_service import DEFAULT_LAYOUT, parse_layout

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 8192


def _is_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def parse_image_list_line(line: str, layout: str = DEFAULT_LAYOUT) -> tuple[datetime, str] | None:
    """Parse ``<timestamp> <image_name>``. Returns None for lines to skip.

    Lines come from a ``surrogateescape`` decode, so a name carrying bytes that
    are not valid UTF-8 is skipped like any other malformed entry.
    """
    fields = line.split()
    if len(fields) != 2:
        return None
    ts_text, name = fields
    if not _is_utf8(name):
        return None
    try:
        ts = parse_layout(ts_text, layout)
    except ValueError:
        return None
    return ts, name


class ImageListScanner:
    """Line-at-a-time reader over the image-list file.

    ``scan()`` advances to the next line and returns False at end of file or
    on a read error; ``text()`` is the current line; ``err()`` is the error
    that stopped scanning, if any. The scanner is also iterable.
    """

    def __init__(self, handle: TextIO) -> None:
        self._handle = handle
        self._text = ""
        self._err: Exception | None = None
        self._done = False

    def scan(self) -> bool:
        if self._done:
            return False
        try:
            line = self._handle.readline()
        except OSError as exc:
            self._err = exc
            self._done = True
            return False
        if not line:
            self._done = True
            return False
        self._text = line.rstrip("\r\n")
        return True

    def text(self) -> str:
        return self._text

    def err(self) -> Exception | None:
        return self._err

    def close(self) -> None:
        self._handle.close()

    def __iter__(self) -> Iterator[str]:
        while self.scan():
            yield self.text()

    def __enter__(self) -> ImageListScanner:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class LocalImageStore:
    """Images stored under ``root`` in two-character prefix directories."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def image_path(self, name: str) -> Path:
        """Return the path of ``name`` under the root. Raises InvalidImageNameError."""
        if len(name) < 2:
            raise InvalidImageNameError(f"Image name too short: {name!r}")
        path = self.root / name[:2] / name
        if not path.resolve().is_relative_to(self.root.resolve()):
            raise InvalidImageNameError(f"Image name escapes image root: {name!r}")
        return path

    def open(self, name: str) -> BinaryIO:
        """Open an image for binary reading."""
        path = self.image_path(name)
        try:
            return open(path, "rb")  # noqa: SIM115
        except FileNotFoundError as exc:
            raise ImageNotFoundError(f"Image not found: {path}") from exc
        except OSError as exc:
            raise ImageReadError(f"Unable to open {path}: {exc}") from exc

    def _read_image(self, name: str) -> Image:
        with self.open(name) as f:
            try:
                stat = os.fstat(f.fileno())
            except OSError as exc:
                raise ImageReadError(f"Unable to stat {f.name}: {exc}") from exc
            md5 = hashlib.md5()  # noqa: S324
            try:
                for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                    md5.update(chunk)
            except OSError as exc:
                raise ImageReadError(f"Unable to read {f.name}: {exc}") from exc
        file_path = str(self.image_path(name))
        return Image(
            file_path=file_path,
            metadata=ImageMetadata(
                image_name=os.path.basename(file_path),
                size=stat.st_size,
                mod_time=datetime.fromtimestamp(stat.st_mtime),
                checksum=md5.hexdigest(),
            ),
        )

    async def get(self, name: str) -> Image:
        """Open, stat and hash an image."""
        return await asyncio.to_thread(self._read_image, name)

    async def read_image(self, image: Image) -> bytes:
        """Read the bytes of a previously fetched image."""
        try:
            return await asyncio.to_thread(Path(image.file_path).read_bytes)
        except OSError as exc:
            raise ImageReadError(f"Unable to read {image.file_path}: {exc}") from exc

    def open_image_list(self, path: Path) -> ImageListScanner:
        """Open the image-list file. Raises OSError when it cannot be opened."""
        handle = open(path, encoding="utf-8", errors="surrogateescape")  # noqa: SIM115
        logger.debug("Opened image list %s", path)
        return ImageListScanner(handle)
