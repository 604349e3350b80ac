"""Application-level exception types.

Convention:
- Remote errors (``DuplicateError``, ``InternalError`` ...) are raised by
  ``RemoteStore`` after mapping an HTTP status code. The sync engine recovers
  ``DuplicateError`` with a HEAD/DELETE reconciliation and records every other
  per-image error in the error log.
- Local errors (``ImageReadError`` and its subclasses) are raised by
  ``LocalImageStore``. They are logged and the image is skipped.
- ``ImageListReadError`` and watermark persistence failures are fatal for a
  run and propagate to the CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from yams_sync.services.http_transport import HTTPResponse


class YamsError(Exception):
    """Base class for every error raised by this package."""


class DuplicateError(YamsError):
    """The remote already has an object under that name (HTTP 409 on put)."""


class InternalError(YamsError):
    """The remote failed (400, 500, 503, unknown codes) or sent undecodable JSON."""


class UnauthorizedError(YamsError):
    """The remote rejected the request signature (HTTP 403)."""


class BucketNotFoundError(YamsError):
    """The configured bucket does not exist (HTTP 404 on put)."""


class ObjectNotFoundError(YamsError):
    """The object does not exist (HTTP 404 on head, delete or list)."""


class YamsConnectionError(YamsError):
    """The HTTP request failed before a status code was received."""


class ErrorResponse(YamsError):
    """Raised by the transport for status codes it treats as errors (400, 500).

    The full response is kept so callers can still map the status code.
    """

    def __init__(self, response: HTTPResponse) -> None:
        super().__init__(f"HTTP {response.status_code}: {response.body[:200]}")
        self.response = response

    @property
    def status_code(self) -> int:
        return self.response.status_code


class ImageReadError(YamsError):
    """A local image could not be opened, inspected or read."""


class InvalidImageNameError(ImageReadError):
    """The image name cannot be mapped to a path under the image root."""


class ImageNotFoundError(ImageReadError):
    """The image does not exist under the image root."""


class ImageListReadError(YamsError):
    """Reading the image-list file failed part way through."""


class SignerError(YamsError):
    """The private key could not be loaded or used for signing."""
