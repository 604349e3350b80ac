"""Per-pass outcome counters."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum


class ImageOutcome(StrEnum):
    """What happened to one image in a pass."""

    SENT = "sent"
    RECOVERED = "recovered"
    SKIPPED = "skipped"
    DUPLICATED = "duplicated"
    CONFLICTIVE_NAME = "conflictive_name"
    FAILED_UPLOAD = "failed_upload"
    NOT_FOUND = "not_found"
    READ_ERROR = "read_error"


@dataclass
class SyncStats:
    """Counters for one pass. Mutated only from the event loop thread."""

    name: str
    counts: Counter[ImageOutcome] = field(default_factory=Counter)
    dispatched: int = 0

    def record(self, outcome: ImageOutcome) -> None:
        self.counts[outcome] += 1

    def __getitem__(self, outcome: ImageOutcome) -> int:
        return self.counts[outcome]

    @property
    def processed(self) -> int:
        return sum(self.counts.values())

    def summary(self) -> str:
        parts = [f"dispatched={self.dispatched}"]
        parts.extend(f"{outcome.value}={self.counts[outcome]}" for outcome in ImageOutcome)
        return f"{self.name} pass: " + " ".join(parts)
