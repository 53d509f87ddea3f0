"""Backup and restore of MongoDB databases to per-collection files."""

from .errors import (
    BackupError,
    BackupIOError,
    DatabaseConnectionError,
    EmptyBackupError,
    EmptyDatabaseError,
    StreamError,
)
from .formats import DataFormat, FormatAdapter, FormatRegistry
from .service import (
    BackupSummary,
    OperationStatus,
    RestoreSummary,
    backup_database,
    is_system_collection,
    perform_backup,
    perform_restore,
    restore_database,
)

__all__ = [
    "BackupError",
    "BackupIOError",
    "BackupSummary",
    "DataFormat",
    "DatabaseConnectionError",
    "EmptyBackupError",
    "EmptyDatabaseError",
    "FormatAdapter",
    "FormatRegistry",
    "OperationStatus",
    "RestoreSummary",
    "StreamError",
    "backup_database",
    "is_system_collection",
    "perform_backup",
    "perform_restore",
    "restore_database",
]
