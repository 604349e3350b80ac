"""Local image descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ImageMetadata:
    """Metadata captured when an image is read from local storage."""

    image_name: str
    size: int
    mod_time: datetime
    checksum: str  # lowercase hex MD5 of the file bytes


@dataclass(frozen=True)
class Image:
    """A local image ready to be uploaded."""

    file_path: str
    metadata: ImageMetadata

    @property
    def name(self) -> str:
        return self.metadata.image_name

    @property
    def checksum(self) -> str:
        return self.metadata.checksum
