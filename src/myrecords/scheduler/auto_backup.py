"""
Automatic and on-demand backups.

BackupScheduler is the single owner of the backup lock. Every path that
snapshots or replaces the primary store goes through it:

    - Scheduled: a periodic task registered under a fixed id, daily or weekly.
    - Manual: requested by the user, waits for the lock and reports an empty
      store as an error.
    - On mutation: fired after a folder or record changes, runs on a
      background thread and skips when another backup or restore holds the
      lock.
    - Restore: delegated to a RestoreEngine sharing the same lock.

Every trigger records what it did in an ActivityLog so that unattended runs
can be inspected afterwards.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from myrecords.backup.errors import (
    BackupError,
    NoDataToBackupError,
    UnknownInternalError,
)
from myrecords.backup.models import BackupFile, RestoreResult
from myrecords.backup.pipeline import run_backup_pipeline
from myrecords.backup.restore import RestoreEngine
from myrecords.backup.snapshot import SnapshotBuilder
from myrecords.backup.store import BackupStore
from myrecords.config.preferences import Preferences, PreferencesError
from myrecords.config.settings import DEFAULT_CONFIG_DIR
from myrecords.scheduler.activity import ActivityEntry, ActivityLog, Outcome, Trigger
from myrecords.scheduler.periodic import PeriodicScheduler
from myrecords.storage.records_store import RecordsStore

logger = logging.getLogger(__name__)

AUTO_BACKUP_TASK_ID = "auto_backup"

# Preference keys
AUTO_BACKUP_ENABLED_KEY = "auto_backup_enabled"
AUTO_BACKUP_FREQUENCY_KEY = "auto_backup_frequency"
LAST_BACKUP_TIMESTAMP_KEY = "last_backup_timestamp"

DEFAULT_LOG_DIR = DEFAULT_CONFIG_DIR / "logs"
LOG_FILE_NAME = "scheduler.log"


class BackupFrequency(Enum):
    """Supported automatic backup frequencies."""

    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def seconds(self) -> int:
        """Get interval duration in seconds."""
        if self == BackupFrequency.WEEKLY:
            return 604800
        return 86400

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.seconds)

    @classmethod
    def from_string(cls, value: str) -> BackupFrequency:
        """Parse frequency from string."""
        value = value.lower().strip()
        for frequency in cls:
            if frequency.value == value:
                return frequency
        raise ValueError(f"Invalid frequency: {value}. Must be daily or weekly.")


@dataclass
class AutoBackupConfig:
    """
    Persisted automatic backup configuration.

    Attributes:
        enabled: Whether the periodic task should be registered.
        frequency: How often the periodic task runs.
        last_run: When the last successful backup finished, if ever.
    """

    enabled: bool = False
    frequency: BackupFrequency = BackupFrequency.DAILY
    last_run: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }


class BackupScheduler:
    """
    Coordinates every backup trigger and restore around one lock.

    Usage:
        scheduler = BackupScheduler(
            records_store, backup_store, Preferences(settings.preferences_path),
            ThreadingPeriodicScheduler(),
        )
        scheduler.resume()

        scheduler.set_auto_backup(True, BackupFrequency.WEEKLY)
        backup = scheduler.trigger_manual_backup()
        scheduler.trigger_on_mutation("folder", "created", "Passports")
    """

    def __init__(
        self,
        records_store: RecordsStore,
        backup_store: BackupStore,
        preferences: Preferences,
        periodic: PeriodicScheduler,
        snapshot_builder: SnapshotBuilder | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self.records_store = records_store
        self.backup_store = backup_store
        self.preferences = preferences
        self.periodic = periodic
        self.snapshot_builder = snapshot_builder or SnapshotBuilder()

        self.lock = threading.Lock()
        self.restore_engine = RestoreEngine(
            records_store, backup_store.crypto, lock=self.lock
        )

        self.activity = ActivityLog((log_dir or DEFAULT_LOG_DIR) / LOG_FILE_NAME)

    # Configuration

    def set_auto_backup(
        self,
        enabled: bool,
        frequency: BackupFrequency | str = BackupFrequency.DAILY,
    ) -> AutoBackupConfig:
        """
        Persist the automatic backup configuration and apply it.

        The periodic task is always cancelled first, so calling this any
        number of times leaves at most one registration.

        Raises:
            ValueError: If frequency is not daily or weekly.
            PreferencesError: If the configuration cannot be saved.
        """
        if isinstance(frequency, str):
            frequency = BackupFrequency.from_string(frequency)

        self.preferences.set(AUTO_BACKUP_ENABLED_KEY, enabled)
        self.preferences.set(AUTO_BACKUP_FREQUENCY_KEY, frequency.value)

        self._apply(enabled, frequency)
        if enabled:
            self._record(
                Trigger.CONFIG, Outcome.CHANGED, f"Automatic backup enabled ({frequency.value})"
            )
        else:
            self._record(Trigger.CONFIG, Outcome.CHANGED, "Automatic backup disabled")
        return self.get_auto_backup_config()

    def get_auto_backup_config(self) -> AutoBackupConfig:
        enabled = self.preferences.get_bool(AUTO_BACKUP_ENABLED_KEY, False)

        stored_frequency = self.preferences.get_str(
            AUTO_BACKUP_FREQUENCY_KEY, BackupFrequency.DAILY.value
        )
        try:
            frequency = BackupFrequency.from_string(stored_frequency or "")
        except ValueError:
            logger.warning(f"Ignoring unknown stored frequency: {stored_frequency!r}")
            frequency = BackupFrequency.DAILY

        last_run = None
        stored_last_run = self.preferences.get_str(LAST_BACKUP_TIMESTAMP_KEY)
        if stored_last_run:
            try:
                last_run = datetime.fromisoformat(stored_last_run)
            except ValueError:
                logger.warning(f"Ignoring invalid last backup timestamp: {stored_last_run!r}")

        return AutoBackupConfig(enabled=enabled, frequency=frequency, last_run=last_run)

    def resume(self) -> AutoBackupConfig:
        """Re-register the periodic task from the persisted configuration."""
        config = self.get_auto_backup_config()
        self._apply(config.enabled, config.frequency)
        return config

    def _apply(self, enabled: bool, frequency: BackupFrequency) -> None:
        self.periodic.cancel(AUTO_BACKUP_TASK_ID)
        if enabled:
            self.periodic.register(
                AUTO_BACKUP_TASK_ID, frequency.interval, self.run_scheduled_backup
            )

    # Triggers

    def run_scheduled_backup(self) -> bool:
        """
        Body of the periodic task.

        Failures are logged and swallowed so the task keeps its schedule.

        Returns:
            Always True.
        """
        self._record(Trigger.SCHEDULED, Outcome.STARTED, "Running scheduled backup")
        with self.lock:
            try:
                backup = self._run_pipeline()
            except Exception as e:
                self._record(Trigger.SCHEDULED, Outcome.FAILED, f"Scheduled backup failed: {e}")
                logger.debug("Scheduled backup failure", exc_info=True)
                return True

        if backup is None:
            self._record(Trigger.SCHEDULED, Outcome.SKIPPED, "No folders to back up")
        else:
            self._record(
                Trigger.SCHEDULED, Outcome.CREATED, "Scheduled backup created", backup.filename
            )
        return True

    def trigger_manual_backup(self, password: str | None = None) -> BackupFile:
        """
        Create a backup now, waiting for any running backup or restore.

        Args:
            password: Protect the backup with a password instead of the
                device key.

        Raises:
            NoDataToBackupError: If the store holds no folders.
            FilesystemError: If the backup cannot be written.
            UnknownInternalError: For any unexpected failure.
        """
        with self.lock:
            try:
                backup = self._run_pipeline(password=password)
            except BackupError as e:
                self._record(Trigger.MANUAL, Outcome.FAILED, f"Manual backup failed: {e}")
                raise
            except Exception as e:
                self._record(Trigger.MANUAL, Outcome.FAILED, f"Manual backup failed: {e}")
                raise UnknownInternalError(f"Failed to create backup: {e}") from e

        if backup is None:
            self._record(Trigger.MANUAL, Outcome.SKIPPED, "No folders to back up")
            raise NoDataToBackupError("No folders to backup")

        self._record(Trigger.MANUAL, Outcome.CREATED, "Manual backup created", backup.filename)
        return backup

    def trigger_on_mutation(
        self,
        entity_type: str,
        operation: str,
        entity_name: str | None = None,
    ) -> threading.Thread:
        """
        Back up in the background after a folder or record changed.

        Never blocks the caller and never raises; outcomes are logged.

        Args:
            entity_type: Kind of entity that changed, e.g. "folder".
            operation: What happened, e.g. "created" or "deleted".
            entity_name: Optional display name for the log.

        Returns:
            The started background thread.
        """
        description = f"{entity_type} {operation}"
        if entity_name:
            description += f": {entity_name}"

        thread = threading.Thread(
            target=self._backup_after_mutation,
            args=(description,),
            name="myrecords-mutation-backup",
            daemon=True,
        )
        thread.start()
        return thread

    def _backup_after_mutation(self, description: str) -> None:
        if not self.lock.acquire(blocking=False):
            self._record(
                Trigger.MUTATION,
                Outcome.SKIPPED,
                f"Backup after {description}: another backup is running",
            )
            return

        try:
            backup = self._run_pipeline()
        except Exception as e:
            self._record(
                Trigger.MUTATION, Outcome.FAILED, f"Backup after {description} failed: {e}"
            )
            return
        finally:
            self.lock.release()

        if backup is None:
            self._record(
                Trigger.MUTATION,
                Outcome.SKIPPED,
                f"Backup after {description}: no folders to back up",
            )
        else:
            self._record(
                Trigger.MUTATION,
                Outcome.CREATED,
                f"Backup after {description}",
                backup.filename,
            )

    def _run_pipeline(self, password: str | None = None) -> BackupFile | None:
        backup = run_backup_pipeline(
            self.records_store,
            self.backup_store,
            snapshot_builder=self.snapshot_builder,
            password=password,
        )
        if backup is not None:
            self._remember_last_backup()
        return backup

    def _remember_last_backup(self) -> None:
        # Only the timestamp is lost on failure; the backup itself is in place
        try:
            self.preferences.set(LAST_BACKUP_TIMESTAMP_KEY, datetime.now().isoformat())
        except PreferencesError as e:
            logger.warning(f"Backup written but last backup time not saved: {e}")

    # Restore

    def restore_backup(self, path: Path, password: str | None = None) -> RestoreResult:
        """
        Restore the primary store from a backup file.

        Waits for any running backup. Raises the RestoreEngine errors.
        """
        self._record(Trigger.RESTORE, Outcome.STARTED, "Restoring", Path(path).name)
        try:
            result = self.restore_engine.restore(Path(path), password=password)
        except BackupError as e:
            self._record(
                Trigger.RESTORE, Outcome.FAILED, f"Restore failed: {e}", Path(path).name
            )
            raise

        self._record(
            Trigger.RESTORE,
            Outcome.COMPLETED,
            f"Restored {result.folders_restored} folders, {result.records_restored} records",
            Path(path).name,
        )
        return result

    # Activity log

    def _record(
        self,
        trigger: Trigger,
        outcome: Outcome,
        message: str,
        filename: str | None = None,
    ) -> None:
        self.activity.append(ActivityEntry(trigger, outcome, message, filename=filename))

        level = logging.WARNING if outcome is Outcome.FAILED else logging.INFO
        suffix = f" ({filename})" if filename else ""
        logger.log(level, f"[{trigger.value}] {message}{suffix}")

    def get_logs(self, lines: int = 100, trigger: Trigger | None = None) -> list[ActivityEntry]:
        """
        Get recent activity entries, oldest first.

        Args:
            lines: Maximum number of entries to return.
            trigger: Only return entries started by this trigger.
        """
        return self.activity.read(limit=lines, trigger=trigger)
