"""
Tests for the scheduler module.

Tests cover:
- BackupFrequency parsing
- Idempotent automatic backup registration
- Scheduled, manual and on-mutation triggers
- Lock exclusivity
- ThreadingPeriodicScheduler
- Scheduler activity log
"""

import shutil
import tempfile
import threading
import unittest
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

from myrecords.backup.crypto import CryptoEngine
from myrecords.backup.errors import (
    NoDataToBackupError,
    UnknownInternalError,
)
from myrecords.backup.store import BackupStore
from myrecords.config.preferences import Preferences, PreferencesError
from myrecords.config.secret_store import SecretStore
from myrecords.scheduler import (
    AUTO_BACKUP_TASK_ID,
    BackupFrequency,
    BackupScheduler,
    ActivityEntry,
    ActivityLog,
    Outcome,
    PeriodicScheduler,
    ThreadingPeriodicScheduler,
    Trigger,
)
from myrecords.scheduler.auto_backup import LAST_BACKUP_TIMESTAMP_KEY
from myrecords.storage import FOLDERS_TABLE, RECORDS_TABLE, RecordsStore


class FakePeriodicScheduler(PeriodicScheduler):
    """Records registrations without running anything."""

    def __init__(self) -> None:
        self.tasks = {}
        self.register_calls = 0

    def register(self, task_id, interval, callback):
        self.register_calls += 1
        self.tasks[task_id] = (interval, callback)

    def cancel(self, task_id):
        self.tasks.pop(task_id, None)

    def is_registered(self, task_id):
        return task_id in self.tasks

    def registered_tasks(self):
        return sorted(self.tasks)


class TestBackupFrequency(unittest.TestCase):
    """Tests for BackupFrequency enum."""

    def test_from_string(self) -> None:
        self.assertEqual(BackupFrequency.from_string("daily"), BackupFrequency.DAILY)
        self.assertEqual(BackupFrequency.from_string(" WEEKLY "), BackupFrequency.WEEKLY)

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            BackupFrequency.from_string("hourly")

    def test_intervals(self) -> None:
        self.assertEqual(BackupFrequency.DAILY.interval, timedelta(hours=24))
        self.assertEqual(BackupFrequency.WEEKLY.interval, timedelta(days=7))


class SchedulerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        base = Path(self.temp_dir)
        self.records_store = RecordsStore(base / "my_records.db")
        self.crypto = CryptoEngine(SecretStore(base / "secrets.json"))
        self.backup_store = BackupStore(base / "backups", self.crypto)
        self.preferences = Preferences(base / "preferences.json")
        self.periodic = FakePeriodicScheduler()
        self.scheduler = BackupScheduler(
            self.records_store,
            self.backup_store,
            self.preferences,
            self.periodic,
            log_dir=base / "logs",
        )

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def add_folder(self, name: str = "Passports") -> int:
        folder_id = self.records_store.insert(FOLDERS_TABLE, {"name": name})
        self.records_store.insert(
            RECORDS_TABLE,
            {"folder_id": folder_id, "field_name": "Number", "field_value": '["X1"]'},
        )
        return folder_id


class TestAutoBackupConfig(SchedulerTestCase):
    """Tests for enabling, disabling and resuming automatic backups."""

    def test_defaults(self) -> None:
        config = self.scheduler.get_auto_backup_config()

        self.assertFalse(config.enabled)
        self.assertEqual(config.frequency, BackupFrequency.DAILY)
        self.assertIsNone(config.last_run)

    def test_enable_registers_task(self) -> None:
        config = self.scheduler.set_auto_backup(True, BackupFrequency.WEEKLY)

        self.assertTrue(config.enabled)
        interval, callback = self.periodic.tasks[AUTO_BACKUP_TASK_ID]
        self.assertEqual(interval, timedelta(days=7))
        self.assertEqual(callback, self.scheduler.run_scheduled_backup)

    def test_enable_is_idempotent(self) -> None:
        """Test that repeated enables leave exactly one registration."""
        for _ in range(3):
            self.scheduler.set_auto_backup(True, "daily")
        self.scheduler.set_auto_backup(True, "weekly")

        self.assertEqual(self.periodic.registered_tasks(), [AUTO_BACKUP_TASK_ID])
        self.assertEqual(self.periodic.tasks[AUTO_BACKUP_TASK_ID][0], timedelta(days=7))

    def test_disable_cancels(self) -> None:
        self.scheduler.set_auto_backup(True, "daily")
        self.scheduler.set_auto_backup(False)

        self.assertFalse(self.periodic.is_registered(AUTO_BACKUP_TASK_ID))
        self.assertFalse(self.preferences.get_bool("auto_backup_enabled"))

    def test_invalid_frequency(self) -> None:
        with self.assertRaises(ValueError):
            self.scheduler.set_auto_backup(True, "monthly")
        self.assertEqual(self.periodic.registered_tasks(), [])

    def test_preferences_written(self) -> None:
        self.scheduler.set_auto_backup(True, BackupFrequency.WEEKLY)

        self.assertTrue(self.preferences.get_bool("auto_backup_enabled"))
        self.assertEqual(self.preferences.get_str("auto_backup_frequency"), "weekly")

    def test_resume_from_preferences(self) -> None:
        """Test that a new process re-registers the persisted schedule."""
        self.preferences.set("auto_backup_enabled", True)
        self.preferences.set("auto_backup_frequency", "weekly")

        config = self.scheduler.resume()

        self.assertTrue(config.enabled)
        self.assertTrue(self.periodic.is_registered(AUTO_BACKUP_TASK_ID))

    def test_resume_disabled(self) -> None:
        self.scheduler.resume()

        self.assertEqual(self.periodic.registered_tasks(), [])

    def test_unknown_stored_frequency_falls_back(self) -> None:
        self.preferences.set("auto_backup_frequency", "fortnightly")

        self.assertEqual(
            self.scheduler.get_auto_backup_config().frequency, BackupFrequency.DAILY
        )


class TestScheduledBackup(SchedulerTestCase):
    """Tests for the periodic task body."""

    def test_empty_store_skipped(self) -> None:
        self.assertTrue(self.scheduler.run_scheduled_backup())
        self.assertEqual(self.backup_store.list_backups(), [])
        self.assertIsNone(self.preferences.get(LAST_BACKUP_TIMESTAMP_KEY))

    def test_creates_backup(self) -> None:
        self.add_folder()

        self.assertTrue(self.scheduler.run_scheduled_backup())

        self.assertEqual(len(self.backup_store.list_backups()), 1)
        self.assertIsNotNone(self.scheduler.get_auto_backup_config().last_run)

    def test_failure_swallowed(self) -> None:
        self.add_folder()

        with patch.object(self.backup_store, "write", side_effect=OSError("disk full")):
            self.assertTrue(self.scheduler.run_scheduled_backup())

        self.assertFalse(self.scheduler.lock.locked())

    def test_retention_applied(self) -> None:
        self.add_folder()

        for _ in range(5):
            self.scheduler.run_scheduled_backup()

        self.assertEqual(len(self.backup_store.list_backups()), 3)


class TestManualBackup(SchedulerTestCase):
    """Tests for user-requested backups."""

    def test_empty_store_raises(self) -> None:
        """Test that an empty store is reported, unlike the scheduled path."""
        with self.assertRaises(NoDataToBackupError):
            self.scheduler.trigger_manual_backup()

    def test_creates_backup(self) -> None:
        self.add_folder()

        backup = self.scheduler.trigger_manual_backup()

        self.assertTrue(backup.path.exists())
        self.assertFalse(self.backup_store.requires_password(backup.path))

    def test_password_backup(self) -> None:
        self.add_folder()

        backup = self.scheduler.trigger_manual_backup(password="hunter2")

        self.assertTrue(self.backup_store.requires_password(backup.path))

    def test_unexpected_error_wrapped(self) -> None:
        self.add_folder()

        with patch(
            "myrecords.scheduler.auto_backup.run_backup_pipeline",
            side_effect=RuntimeError("boom"),
        ):
            with self.assertRaises(UnknownInternalError):
                self.scheduler.trigger_manual_backup()

        self.assertFalse(self.scheduler.lock.locked())

    def test_timestamp_save_failure_keeps_backup(self) -> None:
        """Test that a written backup is reported even if preferences cannot be saved."""
        self.add_folder()

        with patch.object(
            self.preferences, "set", side_effect=PreferencesError("read-only disk")
        ):
            backup = self.scheduler.trigger_manual_backup()

        self.assertTrue(backup.path.exists())
        self.assertEqual(self.backup_store.list_backups()[0].path, backup.path)
        self.assertIsNone(self.scheduler.get_auto_backup_config().last_run)
        outcomes = [entry.outcome for entry in self.scheduler.get_logs(trigger=Trigger.MANUAL)]
        self.assertEqual(outcomes, [Outcome.CREATED])


class TestMutationTrigger(SchedulerTestCase):
    """Tests for backups after data changes."""

    def test_creates_backup_in_background(self) -> None:
        self.add_folder()

        thread = self.scheduler.trigger_on_mutation("folder", "created", "Passports")
        thread.join(timeout=10)

        self.assertFalse(thread.is_alive())
        self.assertEqual(len(self.backup_store.list_backups()), 1)

    def test_skips_when_lock_held(self) -> None:
        """Test that a mutation during another backup does not queue a second one."""
        self.add_folder()

        with self.scheduler.lock:
            thread = self.scheduler.trigger_on_mutation("record", "updated")
            thread.join(timeout=10)

        self.assertEqual(self.backup_store.list_backups(), [])
        entries = self.scheduler.get_logs(trigger=Trigger.MUTATION)
        self.assertEqual([entry.outcome for entry in entries], [Outcome.SKIPPED])
        self.assertIn("another backup is running", entries[0].message)

    def test_empty_store_does_not_raise(self) -> None:
        thread = self.scheduler.trigger_on_mutation("folder", "deleted", "Last one")
        thread.join(timeout=10)

        self.assertEqual(self.backup_store.list_backups(), [])
        self.assertFalse(self.scheduler.lock.locked())

    def test_failure_does_not_raise(self) -> None:
        self.add_folder()

        with patch.object(self.backup_store, "write", side_effect=OSError("disk full")):
            thread = self.scheduler.trigger_on_mutation("folder", "created")
            thread.join(timeout=10)

        self.assertFalse(self.scheduler.lock.locked())
        outcomes = [entry.outcome for entry in self.scheduler.get_logs()]
        self.assertEqual(outcomes, [Outcome.FAILED])


class TestRestoreBackup(SchedulerTestCase):
    """Tests for restores through the scheduler."""

    def test_restore_round_trip(self) -> None:
        self.add_folder("Insurance")
        before = self.records_store.query_all(FOLDERS_TABLE)
        backup = self.scheduler.trigger_manual_backup()
        self.records_store.delete(RECORDS_TABLE)
        self.records_store.delete(FOLDERS_TABLE)

        result = self.scheduler.restore_backup(backup.path)

        self.assertEqual(result.folders_restored, 1)
        self.assertEqual(self.records_store.query_all(FOLDERS_TABLE), before)

    def test_restore_shares_lock(self) -> None:
        self.assertIs(self.scheduler.restore_engine.lock, self.scheduler.lock)


class TestSchedulerLogs(SchedulerTestCase):
    """Tests for the scheduler activity log."""

    def test_no_logs(self) -> None:
        self.assertEqual(self.scheduler.get_logs(), [])

    def test_logs_written(self) -> None:
        self.scheduler.set_auto_backup(True, "daily")
        self.scheduler.set_auto_backup(False)

        logs = self.scheduler.get_logs()

        self.assertEqual(len(logs), 2)
        self.assertEqual(logs[0].trigger, Trigger.CONFIG)
        self.assertIn("enabled (daily)", logs[0].message)
        self.assertEqual(len(self.scheduler.get_logs(lines=1)), 1)

    def test_filter_by_trigger(self) -> None:
        self.add_folder()
        self.scheduler.set_auto_backup(True, "weekly")
        self.scheduler.run_scheduled_backup()
        backup = self.scheduler.trigger_manual_backup()

        scheduled = self.scheduler.get_logs(trigger=Trigger.SCHEDULED)
        manual = self.scheduler.get_logs(trigger=Trigger.MANUAL)

        self.assertEqual(
            [entry.outcome for entry in scheduled], [Outcome.STARTED, Outcome.CREATED]
        )
        self.assertEqual(len(manual), 1)
        self.assertEqual(manual[0].filename, backup.filename)

    def test_restore_logged(self) -> None:
        self.add_folder()
        backup = self.scheduler.trigger_manual_backup()

        self.scheduler.restore_backup(backup.path)

        entries = self.scheduler.get_logs(trigger=Trigger.RESTORE)
        self.assertEqual(
            [entry.outcome for entry in entries], [Outcome.STARTED, Outcome.COMPLETED]
        )
        self.assertEqual(entries[-1].filename, backup.filename)


class TestActivityLog(unittest.TestCase):
    """Tests for the JSON-lines activity log."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "logs" / "scheduler.log"

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_entries_survive_reopen(self) -> None:
        ActivityLog(self.path).append(
            ActivityEntry(Trigger.MANUAL, Outcome.CREATED, "Manual backup created", "a.enc")
        )

        (entry,) = ActivityLog(self.path).read()

        self.assertEqual(entry.trigger, Trigger.MANUAL)
        self.assertEqual(entry.filename, "a.enc")
        self.assertIn("manual", entry.format())

    def test_unreadable_lines_skipped(self) -> None:
        log = ActivityLog(self.path)
        log.append(ActivityEntry(Trigger.CONFIG, Outcome.CHANGED, "first"))
        with open(self.path, "a") as f:
            f.write("[2025-10-28T09:55:00] plain text line\n")
        log.append(ActivityEntry(Trigger.CONFIG, Outcome.CHANGED, "second"))

        self.assertEqual([entry.message for entry in log.read()], ["first", "second"])

    def test_rotation_keeps_generations(self) -> None:
        log = ActivityLog(self.path, max_bytes=10, backup_count=2)

        for i in range(4):
            log.append(ActivityEntry(Trigger.SCHEDULED, Outcome.STARTED, f"run {i}"))

        self.assertTrue(log.rotated_path(1).exists())
        self.assertTrue(log.rotated_path(2).exists())
        self.assertFalse(log.rotated_path(3).exists())
        self.assertEqual([entry.message for entry in log.read()], ["run 3"])
        self.assertIn("run 2", log.rotated_path(1).read_text())
        self.assertIn("run 1", log.rotated_path(2).read_text())

    def test_write_failure_not_raised(self) -> None:
        log = ActivityLog(self.path)

        with patch("builtins.open", side_effect=PermissionError("read-only")):
            log.append(ActivityEntry(Trigger.MANUAL, Outcome.FAILED, "nope"))

        self.assertEqual(log.read(), [])


class TestThreadingPeriodicScheduler(unittest.TestCase):
    """Tests for the thread-based periodic scheduler."""

    def setUp(self) -> None:
        self.periodic = ThreadingPeriodicScheduler()

    def tearDown(self) -> None:
        self.periodic.shutdown(timeout=5)

    def test_runs_callback(self) -> None:
        ran = threading.Event()

        self.periodic.register("task", timedelta(milliseconds=10), ran.set)

        self.assertTrue(ran.wait(timeout=5))

    def test_register_replaces(self) -> None:
        self.periodic.register("task", timedelta(hours=1), lambda: None)
        self.periodic.register("task", timedelta(hours=2), lambda: None)

        self.assertEqual(self.periodic.registered_tasks(), ["task"])

    def test_cancel(self) -> None:
        self.periodic.register("task", timedelta(hours=1), lambda: None)

        self.periodic.cancel("task")
        self.periodic.cancel("unknown")

        self.assertFalse(self.periodic.is_registered("task"))

    def test_exception_does_not_stop_task(self) -> None:
        calls = []
        done = threading.Event()

        def flaky() -> None:
            calls.append(1)
            if len(calls) >= 3:
                done.set()
            raise RuntimeError("transient")

        self.periodic.register("flaky", timedelta(milliseconds=10), flaky)

        self.assertTrue(done.wait(timeout=5))

    def test_invalid_interval(self) -> None:
        with self.assertRaises(ValueError):
            self.periodic.register("task", timedelta(0), lambda: None)

    def test_shutdown_clears(self) -> None:
        self.periodic.register("a", timedelta(hours=1), lambda: None)
        self.periodic.register("b", timedelta(hours=1), lambda: None)

        self.periodic.shutdown(timeout=5)

        self.assertEqual(self.periodic.registered_tasks(), [])


if __name__ == "__main__":
    unittest.main()
