"""Exceptions raised by backup and restore operations."""

from __future__ import annotations


class BackupError(RuntimeError):
    """Raised when backup or restore operations cannot be completed."""


class DatabaseConnectionError(BackupError):
    """The database cannot be reached or rejected the credentials."""


class EmptyDatabaseError(BackupError):
    """The source database has no collection eligible for backup."""


class EmptyBackupError(BackupError):
    """The backup folder holds no file to restore from."""


class BackupIOError(BackupError):
    """A backup folder or file cannot be created, listed or opened."""


class StreamError(BackupError):
    """A collection transfer failed while reading or writing documents."""
