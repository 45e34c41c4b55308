"""
Error taxonomy for the backup and restore engine.

Every failure the engine reports is a BackupError subclass, so callers can
tell "wrong password" apart from "corrupt file" and show a precise message.
"""


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    pass


class NoDataToBackupError(BackupError):
    """Raised when there are no folders, so there is nothing to back up."""

    pass


class PasswordRequiredError(BackupError):
    """Raised when a password-protected backup is opened without a password."""

    pass


class DecryptionError(BackupError):
    """Raised when ciphertext cannot be decrypted with the derived key."""

    pass


class WrongPasswordError(DecryptionError):
    """Raised when a password-protected backup rejects the given password."""

    pass


class InvalidFormatError(BackupError):
    """Raised when a backup file is not a recognizable backup container."""

    pass


class BackupFileNotFoundError(BackupError):
    """Raised when the requested backup file does not exist."""

    pass


class FilesystemError(BackupError):
    """Raised on permission or I/O failures in the backup directory."""

    pass


class UnknownInternalError(BackupError):
    """Raised for unexpected failures that fit no other category."""

    pass
