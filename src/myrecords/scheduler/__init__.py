"""
Scheduling for automatic backups.

Enables daily or weekly automatic backups, manual backups on request and
background backups after every change to folders or records. All of them,
and restores, are serialized by one lock owned by BackupScheduler.

Usage:
    from myrecords.scheduler import BackupFrequency, BackupScheduler
    from myrecords.scheduler import ThreadingPeriodicScheduler

    scheduler = BackupScheduler(
        records_store, backup_store, preferences, ThreadingPeriodicScheduler()
    )

    # Re-register the periodic task saved by a previous run
    scheduler.resume()

    # Enable weekly automatic backups
    scheduler.set_auto_backup(True, BackupFrequency.WEEKLY)

    # Back up right now
    backup = scheduler.trigger_manual_backup(password="optional")

    # What did the unattended runs do?
    for entry in scheduler.get_logs(trigger=Trigger.SCHEDULED):
        print(entry.format())
"""

from myrecords.scheduler.activity import ActivityEntry, ActivityLog, Outcome, Trigger
from myrecords.scheduler.auto_backup import (
    AUTO_BACKUP_TASK_ID,
    AutoBackupConfig,
    BackupFrequency,
    BackupScheduler,
)
from myrecords.scheduler.periodic import PeriodicScheduler, ThreadingPeriodicScheduler

__all__ = [
    # Main class
    "BackupScheduler",
    # Periodic tasks
    "PeriodicScheduler",
    "ThreadingPeriodicScheduler",
    "AUTO_BACKUP_TASK_ID",
    # Enums and dataclasses
    "BackupFrequency",
    "AutoBackupConfig",
    # Activity log
    "ActivityLog",
    "ActivityEntry",
    "Trigger",
    "Outcome",
]
