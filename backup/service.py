"""Backup and restore of a whole MongoDB database, one collection at a time.

Backup writes every user collection into a fresh ``{epoch_ms}_{database}``
folder and stops at the first failure. Restore drops the user collections of
the target database and reloads them from the files of a backup folder; a
failing file is reported and the remaining files are still restored.

:func:`perform_backup` and :func:`perform_restore` are the entry points used by
the command line. They never raise: every outcome becomes an
:class:`OperationStatus` carrying a sentence for the operator.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pymongo.errors import PyMongoError

from .connection import DEFAULT_TIMEOUT_MS, connect
from .errors import BackupError, BackupIOError, EmptyBackupError, EmptyDatabaseError, StreamError
from .formats import FormatAdapter, FormatRegistry
from .pipeline import DEFAULT_QUEUE_SIZE, TransferResult, backup_collection, restore_collection
from .progress import ProgressFactory, Spinner

if TYPE_CHECKING:
    from models import OperationConfig

logger = structlog.get_logger(__name__)

SYSTEM_COLLECTION_PATTERN = re.compile(r"^.*system\..*$")
INCOMPLETE_MARKER = "INCOMPLETE"


@dataclass(slots=True, frozen=True)
class BackupUnit:
    """One collection to dump and the file it goes to."""

    collection: Any
    destination: Path


@dataclass(slots=True, frozen=True)
class RestoreUnit:
    """One backup file and the collection it is loaded into."""

    source: Path
    collection_name: str
    adapter: FormatAdapter


@dataclass(slots=True, frozen=True)
class BackupSummary:
    path: Path
    results: list[TransferResult] = field(default_factory=list)

    @property
    def documents(self) -> int:
        return sum(result.item_count for result in self.results)


@dataclass(slots=True)
class RestoreSummary:
    results: list[TransferResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def restored(self) -> list[TransferResult]:
        return [result for result in self.results if result.success]

    @property
    def failed(self) -> list[TransferResult]:
        return [result for result in self.results if not result.success]

    def describe(self) -> str:
        parts = [
            f"{result.collection}: inserted={result.item_count}, errors={result.error_count}"
            for result in self.results
        ]
        if self.skipped:
            parts.append(f"skipped: {', '.join(self.skipped)}")
        return "; ".join(parts)


@dataclass(slots=True, frozen=True)
class OperationStatus:
    """Final outcome of a backup or restore run."""

    success: bool
    message: str
    detail: str | None = None

    def __str__(self) -> str:
        return self.message


def is_system_collection(name: str) -> bool:
    """Return ``True`` for server-managed collections such as ``system.views``."""

    return bool(SYSTEM_COLLECTION_PATTERN.match(name))


async def list_user_collections(db: Any) -> list[str]:
    """Return a snapshot of collection names, system collections excluded."""

    names = await db.list_collection_names()
    return [name for name in names if not is_system_collection(name)]


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


def _mark_incomplete(folder: Path, detail: str) -> None:
    try:
        (folder / INCOMPLETE_MARKER).write_text(detail + "\n", encoding="utf-8")
    except OSError as exc:
        logger.error("backup_marker_failed", path=str(folder), error=str(exc))


async def backup_database(
    db: Any,
    *,
    database: str,
    root: str | Path,
    adapter: FormatAdapter,
    progress_factory: ProgressFactory = Spinner,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    clock: Callable[[], int] = _epoch_ms,
) -> BackupSummary:
    """Dump every user collection of ``db`` into a new folder under ``root``.

    Raises
    ------
    EmptyDatabaseError
        If there is no user collection; no folder is created in that case.
    BackupIOError
        If the backup folder or a collection file cannot be created.
    StreamError
        If a collection fails mid-transfer. The folder is kept and marked
        with an ``INCOMPLETE`` file.
    """

    names = await list_user_collections(db)
    if not names:
        raise EmptyDatabaseError("Database is empty")

    folder = Path(root) / f"{clock()}_{database}"
    try:
        folder.mkdir(parents=True, exist_ok=False)
    except OSError as exc:
        logger.error("backup_folder_failed", path=str(folder), error=str(exc))
        raise BackupIOError(f"Can't create backup folder {folder}. {exc}") from exc
    logger.info("backup_started", database=database, path=str(folder), collections=len(names))

    summary = BackupSummary(path=folder)
    for name in names:
        unit = BackupUnit(collection=db[name], destination=folder / adapter.filename(name))
        try:
            result = await backup_collection(
                unit.collection,
                unit.destination,
                adapter,
                progress=progress_factory(f"Backing up {name} ..."),
                queue_size=queue_size,
            )
        except BackupError as exc:
            _mark_incomplete(folder, str(exc))
            raise
        summary.results.append(result)

    logger.info("backup_finished", path=str(folder), documents=summary.documents)
    return summary


async def drop_user_collections(db: Any) -> list[str]:
    """Drop all user collections concurrently and wait for every drop.

    Returns the names whose drop failed; failures are logged, not raised.
    """

    names = await list_user_collections(db)
    outcomes = await asyncio.gather(
        *(db.drop_collection(name) for name in names),
        return_exceptions=True,
    )
    failed: list[str] = []
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("collection_drop_failed", collection=name, error=str(outcome))
            failed.append(name)
    logger.info("collections_dropped", dropped=len(names) - len(failed), failed=len(failed))
    return failed


def _list_backup_files(root: Path) -> list[Path]:
    try:
        return sorted(entry for entry in root.iterdir() if entry.is_file())
    except OSError as exc:
        logger.error("backup_folder_unreadable", path=str(root), error=str(exc))
        raise BackupIOError(f"Can't read backup folder {root}. {exc}") from exc


async def restore_database(
    db: Any,
    *,
    root: str | Path,
    registry: FormatRegistry,
    progress_factory: ProgressFactory = Spinner,
) -> RestoreSummary:
    """Replace the user collections of ``db`` with the files in ``root``.

    Raises
    ------
    BackupIOError
        If ``root`` cannot be listed.
    EmptyBackupError
        If ``root`` holds no file.
    """

    folder = Path(root)
    files = _list_backup_files(folder)
    if not files:
        raise EmptyBackupError("Files are not found in backup folder")

    await drop_user_collections(db)

    summary = RestoreSummary()
    for path in files:
        if path.name == INCOMPLETE_MARKER:
            logger.warning("restore_from_incomplete_backup", path=str(folder))
            summary.skipped.append(path.name)
            continue
        adapter = registry.detect(path.name)
        if adapter is None:
            logger.info(
                "restore_file_skipped",
                file=path.name,
                supported=",".join(registry.extensions),
            )
            summary.skipped.append(path.name)
            continue
        unit = RestoreUnit(source=path, collection_name=adapter.collection_name(path.name), adapter=adapter)
        if is_system_collection(unit.collection_name):
            logger.info("restore_system_collection_skipped", file=path.name)
            summary.skipped.append(path.name)
            continue

        result = await _restore_unit(db, unit, progress_factory)
        summary.results.append(result)
        logger.info(
            "collection_restored",
            collection=result.collection,
            inserted=result.item_count,
            errors=result.error_count,
            success=result.success,
        )

    logger.info(
        "restore_finished",
        restored=len(summary.restored),
        failed=len(summary.failed),
        skipped=len(summary.skipped),
    )
    return summary


async def _restore_unit(db: Any, unit: RestoreUnit, progress_factory: ProgressFactory) -> TransferResult:
    name = unit.collection_name
    try:
        collection = await db.create_collection(name)
        return await restore_collection(
            collection,
            unit.source,
            unit.adapter,
            progress=progress_factory(f"Restoring {name}"),
        )
    except (StreamError, PyMongoError) as exc:
        logger.error("collection_restore_failed", collection=name, error=str(exc))
        return TransferResult(collection=name, success=False, detail=str(exc))


async def perform_backup(
    config: OperationConfig,
    *,
    registry: FormatRegistry,
    progress_factory: ProgressFactory = Spinner,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> OperationStatus:
    """Back up ``config.database`` and describe the outcome."""

    try:
        async with connect(config.uri, config.database, timeout_ms=timeout_ms) as db:
            summary = await backup_database(
                db,
                database=config.database,
                root=config.path,
                adapter=registry.adapter(config.format),
                progress_factory=progress_factory,
                queue_size=queue_size,
            )
    except (BackupError, PyMongoError) as exc:
        logger.error("backup_failed", database=config.database, error=str(exc))
        return OperationStatus(
            success=False,
            message=f"Error while backing up database. {_sentence(exc)}",
            detail=str(exc),
        )
    return OperationStatus(
        success=True,
        message=f"Backup is ready. Path to backup is {summary.path}.",
        detail=str(summary.path),
    )


async def perform_restore(
    config: OperationConfig,
    *,
    registry: FormatRegistry,
    progress_factory: ProgressFactory = Spinner,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> OperationStatus:
    """Restore ``config.database`` from the backup folder ``config.path``."""

    try:
        async with connect(config.uri, config.database, timeout_ms=timeout_ms) as db:
            summary = await restore_database(
                db,
                root=config.path,
                registry=registry,
                progress_factory=progress_factory,
            )
    except (BackupError, PyMongoError) as exc:
        logger.error("restore_failed", database=config.database, error=str(exc))
        return OperationStatus(
            success=False,
            message=f"Error while restoring database. {_sentence(exc)}",
            detail=str(exc),
        )
    failed = summary.failed
    if failed:
        message = (
            f"Database restored with errors. {len(failed)} of {len(summary.results)} "
            f"collections failed: {', '.join(result.collection for result in failed)}."
        )
    else:
        message = "Database restored"
    return OperationStatus(success=True, message=message, detail=summary.describe())


def _sentence(exc: BaseException) -> str:
    text = str(exc).strip() or type(exc).__name__
    return text if text.endswith(".") else f"{text}."
