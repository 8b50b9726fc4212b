"""Counters returned by the migration steps."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

_COUNTERS = (
    "patched_nexi",
    "patched_notebooks",
    "patched_chunks",
    "patched_tags",
    "patched_order_records",
    "deleted_malformed",
    "fixed_conversation_timestamps",
    "seeded_order_records",
    "clones_created",
    "clones_skipped",
    "clone_failures",
    "fallback_patched_chunks",
    "write_failures",
)


@dataclass
class MigrationReport:
    """
    Result of a migration run or of one of its steps.

    Steps each return their own report; the orchestrator folds them together
    with ``merge``. Counters add up, identity fields keep the first value set.
    """

    patched_nexi: int = 0
    patched_notebooks: int = 0
    patched_chunks: int = 0
    patched_tags: int = 0
    patched_order_records: int = 0
    deleted_malformed: int = 0
    fixed_conversation_timestamps: int = 0
    seeded_order_records: int = 0
    total_users_detected: int = 0
    clones_created: int = 0
    clones_skipped: int = 0
    clone_failures: int = 0
    fallback_owner_used: str | None = None
    fallback_patched_chunks: int = 0
    write_failures: int = 0
    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    def merge(self, other: MigrationReport) -> MigrationReport:
        """Add ``other``'s counters into this report and return self."""
        for name in _COUNTERS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.total_users_detected = max(self.total_users_detected, other.total_users_detected)
        if self.fallback_owner_used is None:
            self.fallback_owner_used = other.fallback_owner_used
        return self

    def finish(self) -> None:
        self.finished_at = datetime.now()

    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    @property
    def total_changes(self) -> int:
        """Records written or deleted, excluding failures and skips."""
        return sum(
            getattr(self, name)
            for name in _COUNTERS
            if name not in ("clones_skipped", "clone_failures", "write_failures", "fallback_patched_chunks")
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/CLI output."""
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name not in ("started_at", "finished_at")}
        data["duration_seconds"] = round(self.duration_seconds(), 2)
        return data
