"""
Backup activity log.

Every backup trigger and restore appends one entry describing what started
it and how it ended. Entries are stored one JSON object per line so that
``myrecords schedule --logs`` can filter them by trigger.

The file is rotated by size: ``scheduler.log`` becomes ``scheduler.log.1``,
older generations shift up, and anything past the last kept generation is
deleted.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Maximum log file size before rotation (5 MB)
MAX_LOG_SIZE = 5 * 1024 * 1024
# Number of rotated log files to keep
LOG_BACKUP_COUNT = 3


class Trigger(Enum):
    """What started a backup or restore."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    MUTATION = "mutation"
    RESTORE = "restore"
    CONFIG = "config"


class Outcome(Enum):
    """How an activity ended."""

    STARTED = "started"
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"
    COMPLETED = "completed"
    CHANGED = "changed"


@dataclass
class ActivityEntry:
    """
    One line of the activity log.

    Attributes:
        trigger: What started the activity.
        outcome: How it ended.
        message: Human readable detail.
        filename: Backup file involved, if any.
        timestamp: When the entry was written (UTC).
    """

    trigger: Trigger
    outcome: Outcome
    message: str
    filename: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "trigger": self.trigger.value,
            "outcome": self.outcome.value,
            "message": self.message,
            "filename": self.filename,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEntry:
        return cls(
            trigger=Trigger(data["trigger"]),
            outcome=Outcome(data["outcome"]),
            message=str(data["message"]),
            filename=data.get("filename"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )

    def format(self) -> str:
        return (
            f"[{self.timestamp.isoformat(timespec='seconds')}] "
            f"{self.trigger.value:<9} {self.outcome.value:<9} {self.message}"
        )


class ActivityLog:
    """
    Size-rotated JSON-lines log of backup activity.

    Usage:
        log = ActivityLog(Path("~/.myrecords/data/logs/scheduler.log"))
        log.append(ActivityEntry(Trigger.MANUAL, Outcome.CREATED, "Backup created"))
        failures = [e for e in log.read() if e.outcome is Outcome.FAILED]

    Attributes:
        path: Current log file.
        max_bytes: Size at which the current file is rotated.
        backup_count: Number of rotated generations kept.
    """

    def __init__(
        self,
        path: Path,
        max_bytes: int = MAX_LOG_SIZE,
        backup_count: int = LOG_BACKUP_COUNT,
    ) -> None:
        self.path = Path(path)
        self.max_bytes = max_bytes
        self.backup_count = backup_count

    def rotated_path(self, generation: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{generation}")

    def append(self, entry: ActivityEntry) -> None:
        """Write an entry. Failures are logged, never raised."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate()
            with open(self.path, "a") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
        except OSError as e:
            logger.error(f"Could not write activity log {self.path}: {e}")

    def read(self, limit: int = 100, trigger: Trigger | None = None) -> list[ActivityEntry]:
        """
        Return the most recent entries of the current file, oldest first.

        Args:
            limit: Maximum number of entries returned.
            trigger: Only return entries started by this trigger.
        """
        if not self.path.exists():
            return []

        try:
            with open(self.path) as f:
                lines = f.readlines()
        except OSError as e:
            logger.warning(f"Could not read activity log {self.path}: {e}")
            return []

        entries = []
        for line in lines:
            try:
                entry = ActivityEntry.from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError):
                logger.debug(f"Skipping unreadable activity log line: {line!r}")
                continue
            if trigger is None or entry.trigger is trigger:
                entries.append(entry)

        return entries[-limit:] if limit > 0 else []

    def _rotate(self) -> None:
        if not self.path.exists() or self.path.stat().st_size < self.max_bytes:
            return

        oldest = self.rotated_path(self.backup_count)
        oldest.unlink(missing_ok=True)
        for generation in range(self.backup_count - 1, 0, -1):
            source = self.rotated_path(generation)
            if source.exists():
                os.replace(source, self.rotated_path(generation + 1))
        os.replace(self.path, self.rotated_path(1))
        logger.debug(f"Rotated activity log {self.path}")
