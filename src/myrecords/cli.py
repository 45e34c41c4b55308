"""
Command-line interface for My Records.

Provides commands for creating, listing, inspecting and restoring backups,
and for configuring automatic backups.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

from myrecords import __version__
from myrecords.backup import (
    BackupError,
    BackupStore,
    CryptoEngine,
    NoDataToBackupError,
    PasswordRequiredError,
    WrongPasswordError,
)
from myrecords.config import (
    ConfigurationError,
    Preferences,
    PreferencesError,
    SecretStore,
    SecretStoreError,
    Settings,
    load_config,
)
from myrecords.config.settings import DEFAULT_CONFIG_DIR
from myrecords.scheduler import (
    BackupFrequency,
    BackupScheduler,
    ThreadingPeriodicScheduler,
    Trigger,
)
from myrecords.storage import RecordsStore, StorageError

# Set up logging
logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "MYRECORDS_BACKUP_PASSWORD"

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the My Records CLI."""
    parser = argparse.ArgumentParser(
        prog="myrecords",
        description="Encrypted backup and restore for My Records",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"myrecords {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.myrecords/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        help="Create a backup now",
        description="Create an encrypted backup of all folders and records.",
    )
    backup_parser.add_argument(
        "--password",
        action="store_true",
        help=f"Protect the backup with a password (prompted, or read from {PASSWORD_ENV_VAR})",
    )
    backup_parser.set_defaults(func=cmd_backup)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore from a backup file",
        description="Replace all folders and records with the contents of a backup.",
    )
    restore_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file (.enc, or legacy .json)",
    )
    restore_parser.add_argument(
        "--password",
        action="store_true",
        help="Prompt for the backup password",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List backups, newest first",
        description="List the backup files in the backup directory.",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    list_parser.set_defaults(func=cmd_list)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Describe a backup file",
        description="Show size, date and encryption details of a backup without restoring it.",
    )
    info_parser.add_argument(
        "backup_file",
        metavar="FILE",
        help="Path to backup file",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # schedule command
    schedule_parser = subparsers.add_parser(
        "schedule",
        help="Configure automatic backups",
        description="Enable, disable or run automatic backups.",
    )
    schedule_parser.add_argument(
        "--frequency",
        choices=[frequency.value for frequency in BackupFrequency],
        help="Backup frequency (with --enable)",
    )
    schedule_group = schedule_parser.add_mutually_exclusive_group()
    schedule_group.add_argument(
        "--enable",
        action="store_true",
        help="Enable automatic backups",
    )
    schedule_group.add_argument(
        "--disable",
        action="store_true",
        help="Disable automatic backups",
    )
    schedule_group.add_argument(
        "--status",
        action="store_true",
        help="Show automatic backup status (default)",
    )
    schedule_group.add_argument(
        "--run",
        action="store_true",
        help="Run the automatic backup scheduler in the foreground",
    )
    schedule_group.add_argument(
        "--logs",
        action="store_true",
        help="Show recent scheduler logs",
    )
    schedule_parser.add_argument(
        "--trigger",
        choices=[trigger.value for trigger in Trigger],
        help="Only show log entries started by this trigger (with --logs)",
    )
    schedule_parser.set_defaults(func=cmd_schedule)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show data and backup status",
        description="Display paths, record counts and the latest backup.",
    )
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@dataclass
class Components:
    """Engine objects wired from settings."""

    settings: Settings
    records_store: RecordsStore
    crypto: CryptoEngine
    backup_store: BackupStore
    preferences: Preferences
    periodic: ThreadingPeriodicScheduler
    scheduler: BackupScheduler


def build_components(settings: Settings) -> Components:
    """Wire the stores, crypto engine and scheduler for the given settings."""
    records_store = RecordsStore(settings.database_path)
    crypto = CryptoEngine(SecretStore(settings.secrets_path))
    backup_store = BackupStore(
        Path(settings.backup_dir),
        crypto,
        max_backups=settings.backup.max_backups,
    )
    preferences = Preferences(settings.preferences_path)
    periodic = ThreadingPeriodicScheduler()
    scheduler = BackupScheduler(
        records_store,
        backup_store,
        preferences,
        periodic,
        log_dir=Path(settings.data_dir) / "logs",
    )
    return Components(
        settings=settings,
        records_store=records_store,
        crypto=crypto,
        backup_store=backup_store,
        preferences=preferences,
        periodic=periodic,
        scheduler=scheduler,
    )


def _load_components(args: argparse.Namespace) -> Components:
    config_path = Path(args.config) if args.config else None
    return build_components(load_config(config_path))


def _read_password(prompt: str, confirm: bool = False) -> str:
    """Read a password from the environment or prompt for it."""
    password = os.environ.get(PASSWORD_ENV_VAR)
    if password:
        return password

    password = getpass.getpass(prompt)
    if confirm and getpass.getpass("Confirm password: ") != password:
        raise ValueError("Passwords do not match")
    if not password:
        raise ValueError("Password cannot be empty")
    return password


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup now."""
    components = _load_components(args)

    password = None
    if args.password:
        try:
            password = _read_password("Backup password: ", confirm=True)
        except ValueError as e:
            output_error(f"Error: {e}")
            return 1

    output("My Records Backup")
    output("=" * 50)
    output()
    output(f"Backup directory: {components.backup_store.backup_dir}")
    output(f"Password protected: {password is not None}")
    output()

    try:
        backup = components.scheduler.trigger_manual_backup(password=password)
    except NoDataToBackupError:
        output_error("Nothing to back up: there are no folders yet.")
        return 1
    except BackupError as e:
        output_error(f"Backup failed: {e}")
        return 1

    output("Backup created successfully!")
    output()
    output(f"  File: {backup.path}")
    output(f"  Size: {backup.size_bytes:,} bytes")
    output()
    output("To restore from this backup, run:")
    output(f"  myrecords restore {backup.path}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore from a backup file."""
    components = _load_components(args)
    backup_path = Path(args.backup_file)

    if not backup_path.exists():
        output_error(f"Error: Backup file not found: {backup_path}")
        return 1

    try:
        info = components.backup_store.get_backup_info(backup_path)
    except BackupError as e:
        output_error(f"Error: {e}")
        return 1

    output("My Records Restore")
    output("=" * 50)
    output()
    output(f"Backup file: {backup_path}")
    output(f"  Created: {info.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
    output(f"  Encrypted: {info.is_encrypted}")
    output(f"  Password protected: {info.is_password_protected}")
    output()

    password = None
    if args.password or info.requires_password:
        try:
            password = _read_password("Backup password: ")
        except ValueError as e:
            output_error(f"Error: {e}")
            return 1

    if not args.force:
        output("WARNING: This will replace all existing folders and records.")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return 0

    output("Restoring...")
    try:
        result = components.scheduler.restore_backup(backup_path, password=password)
    except PasswordRequiredError:
        output_error("Restore failed: this backup is password protected. Use --password.")
        return 1
    except WrongPasswordError:
        output_error("Restore failed: incorrect password.")
        return 1
    except BackupError as e:
        output_error(f"Restore failed: {e}")
        return 1

    output()
    output("Restore completed successfully!")
    output()
    output(f"  Folders restored: {result.folders_restored}")
    output(f"  Records restored: {result.records_restored}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    """List backups, newest first."""
    components = _load_components(args)

    try:
        backups = components.backup_store.list_backups()
    except BackupError as e:
        output_error(f"Error: {e}")
        return 1

    if args.json:
        data = [
            {
                "filename": backup.filename,
                "path": str(backup.path),
                "created": backup.created_at.isoformat(),
                "size": backup.size_bytes,
            }
            for backup in backups
        ]
        output(json.dumps(data, indent=2), force=True)
        return 0

    output(f"Backups in {components.backup_store.backup_dir}")
    output("=" * 50)
    output()

    if not backups:
        output("No backups found.")
        return 0

    for backup in backups:
        created = backup.created_at.strftime("%Y-%m-%d %H:%M")
        output(f"  {backup.filename:<36} {created}  {backup.size_bytes:>10,} bytes", force=True)
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Describe a backup file."""
    components = _load_components(args)

    try:
        info = components.backup_store.get_backup_info(Path(args.backup_file))
    except BackupError as e:
        output_error(f"Error: {e}")
        return 1

    if args.json:
        output(json.dumps(info.to_dict(), indent=2), force=True)
        return 0

    output("Backup Information")
    output("=" * 50)
    output()
    output(f"File: {info.filename}")
    output(f"Size: {info.size_bytes:,} bytes")
    output(f"Created: {info.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
    output(f"Encrypted: {'Yes' if info.is_encrypted else 'No (legacy plaintext)'}")
    output(f"Requires password: {'Yes' if info.requires_password else 'No'}")
    if info.version is not None:
        output(f"Version: {info.version}")
    if info.folder_count is not None:
        output(f"Folders: {info.folder_count}")
    if info.record_count is not None:
        output(f"Records: {info.record_count}")
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    """Configure automatic backups."""
    components = _load_components(args)
    scheduler = components.scheduler

    if args.logs:
        output("Scheduler Logs")
        output("=" * 50)
        output()
        trigger = Trigger(args.trigger) if args.trigger else None
        entries = scheduler.get_logs(lines=50, trigger=trigger)
        if entries:
            for entry in entries:
                output(entry.format())
        else:
            output("No scheduler logs found.")
        return 0

    if args.enable:
        frequency = args.frequency or components.settings.backup.frequency
        config = scheduler.set_auto_backup(True, frequency)
        output(f"Automatic backups enabled ({config.frequency.value}).")
        output("Run 'myrecords schedule --run' to keep the scheduler running.")
        return 0

    if args.disable:
        scheduler.set_auto_backup(False, scheduler.get_auto_backup_config().frequency)
        output("Automatic backups disabled.")
        return 0

    if args.run:
        config = scheduler.resume()
        if not config.enabled:
            output_error("Error: Automatic backups are disabled.")
            output("First enable them with: myrecords schedule --enable --frequency daily")
            return 1

        output(f"Running automatic backups ({config.frequency.value}).")
        output("Press Ctrl+C to stop.")
        stop = threading.Event()
        try:
            while not stop.wait(60):
                pass
        finally:
            components.periodic.shutdown(timeout=5)
        return 0

    config = scheduler.get_auto_backup_config()

    output("Automatic Backup Status")
    output("=" * 50)
    output()
    if config.enabled:
        output("Status: ENABLED")
        output(f"Frequency: {config.frequency.value}")
    else:
        output("Status: DISABLED")
        output()
        output("To enable automatic backups:")
        output("  myrecords schedule --enable --frequency daily")
    if config.last_run:
        output(f"Last backup: {config.last_run.strftime('%Y-%m-%d %H:%M:%S')}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show data and backup status."""
    components = _load_components(args)
    settings = components.settings

    stats = components.records_store.get_statistics()
    backups = components.backup_store.list_backups()
    config = components.scheduler.get_auto_backup_config()

    if args.json:
        data = {
            "version": __version__,
            "data_dir": str(settings.data_dir),
            "database": str(settings.database_path),
            "backup_dir": str(components.backup_store.backup_dir),
            "folders": stats["folders"],
            "records": stats["records"],
            "backups": len(backups),
            "latest_backup": backups[0].filename if backups else None,
            "auto_backup": config.to_dict(),
        }
        output(json.dumps(data, indent=2), force=True)
        return 0

    output(f"My Records v{__version__}")
    output("=" * 50)
    output()
    output(f"Config directory: {DEFAULT_CONFIG_DIR}")
    output(f"Data directory:   {settings.data_dir}")
    output(f"Backup directory: {components.backup_store.backup_dir}")
    output()
    output(f"Folders: {stats['folders']}")
    output(f"Records: {stats['records']}")
    output()
    output(f"Backups kept: {len(backups)} of {components.backup_store.max_backups}")
    output(components.backup_store.describe_last_backup())
    output(f"Automatic backups: {'enabled, ' + config.frequency.value if config.enabled else 'disabled'}")
    return 0


def main() -> NoReturn:
    """Main entry point for the My Records CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except SecretStoreError as e:
        output_error(f"Secret store error: {e}")
        sys.exit(2)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except PreferencesError as e:
        output_error(f"Preferences error: {e}")
        sys.exit(2)
    except StorageError as e:
        output_error(f"Storage error: {e}")
        sys.exit(1)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
