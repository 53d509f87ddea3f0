"""Command line entry point: ``python -m backup {backup,restore,check}``."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence

import structlog
from pydantic import ValidationError
from rich.console import Console

from observability.logging import configure_logging
from settings import get_settings

from .connection import validate_connection
from .errors import DatabaseConnectionError
from .formats import DataFormat, FormatRegistry
from .progress import SilentProgress, Spinner
from .service import OperationStatus, perform_backup, perform_restore

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="backup", description="Back up or restore a MongoDB database.")
    p.add_argument("command", choices=("backup", "restore", "check"))
    p.add_argument("--uri", help="MongoDB connection string (default: MONGO_URI or MONGO_HOST/PORT)")
    p.add_argument("--database", "-d", help="database name (default: MONGO_DATABASE)")
    p.add_argument(
        "--path",
        "-p",
        help="backup root for 'backup', backup folder for 'restore' (default: BACKUP_PATH)",
    )
    p.add_argument("--format", "-f", choices=[fmt.value for fmt in DataFormat], help="backup file format")
    p.add_argument("--quiet", "-q", action="store_true", help="do not show progress spinners")
    p.add_argument("--log-level", help="log level (default: BACKUP_LOG_LEVEL)")
    return p


async def run(args: argparse.Namespace) -> OperationStatus:
    settings = get_settings()
    config = settings.operation_config(
        uri=args.uri,
        database=args.database,
        path=args.path,
        format=args.format,
    )
    timeout_ms = settings.mongo.timeout_ms

    try:
        await validate_connection(config.uri, timeout_ms=timeout_ms)
    except DatabaseConnectionError as exc:
        return OperationStatus(success=False, message=str(exc), detail=str(exc))
    if args.command == "check":
        return OperationStatus(success=True, message="Connection is valid")

    registry = FormatRegistry.default()
    progress_factory = SilentProgress if args.quiet else Spinner
    if args.command == "backup":
        return await perform_backup(
            config,
            registry=registry,
            progress_factory=progress_factory,
            queue_size=settings.queue_size,
            timeout_ms=timeout_ms,
        )
    return await perform_restore(
        config,
        registry=registry,
        progress_factory=progress_factory,
        timeout_ms=timeout_ms,
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)
    console = Console()

    try:
        status = asyncio.run(run(args))
    except ValidationError as exc:
        logger.error("invalid_configuration", error=str(exc))
        console.print(f"Invalid configuration. {exc}", style="red", markup=False)
        return 2

    if status.success:
        console.print(status.message, markup=False)
        if status.detail and args.command == "restore":
            console.print(status.detail, markup=False)
        return 0
    console.print(status.message, style="red", markup=False)
    return 1
