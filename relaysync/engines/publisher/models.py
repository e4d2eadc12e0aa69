"""Result types for the batch publisher."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class PublishSummary:
    """Counts accumulated over one or more flushes."""

    published: int = 0
    failed: int = 0
    batches: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, other: PublishSummary) -> None:
        self.published += other.published
        self.failed += other.failed
        self.batches += other.batches
        self.errors.extend(other.errors)
