"""Per-collection transfer between MongoDB and backup files.

Backup runs a producer that walks the collection cursor and encodes documents
into a bounded :class:`asyncio.Queue`, and a consumer that drains the queue
into the destination file. The queue bound keeps memory flat for large
collections: the cursor is not advanced while the writer is behind.

Restore decodes a whole file into memory and submits it as one ordered bulk
write of ``InsertOne`` operations.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

import structlog
from bson.errors import BSONError
from pymongo import InsertOne
from pymongo.errors import BulkWriteError, PyMongoError

from .errors import BackupIOError, StreamError
from .formats import DocumentEncoder, FormatAdapter, FormatDecodeError
from .progress import Progress

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_SIZE = 1000
FLUSH_BYTES = 256 * 1024

_END = object()


@dataclass(slots=True, frozen=True)
class TransferResult:
    """Outcome of one collection transfer."""

    collection: str
    success: bool
    item_count: int = 0
    error_count: int = 0
    detail: str | None = None


async def backup_collection(
    collection: Any,
    destination: Path,
    adapter: FormatAdapter,
    *,
    progress: Progress,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> TransferResult:
    """Stream every document of ``collection`` into ``destination``.

    Raises
    ------
    BackupIOError
        If the destination file cannot be opened.
    StreamError
        If reading the cursor or writing the file fails mid-transfer.
    """

    name = collection.name
    progress.start()
    try:
        try:
            handle = destination.open("wb")
        except OSError as exc:
            raise BackupIOError(f"Can't open {destination}. {exc}") from exc
        with handle:
            count = await _pump(collection, handle, adapter.encoder(), destination, queue_size)
    finally:
        progress.stop()

    logger.info("collection_backed_up", collection=name, documents=count, path=str(destination))
    return TransferResult(collection=name, success=True, item_count=count)


async def _pump(
    collection: Any,
    handle: BinaryIO,
    encoder: DocumentEncoder,
    destination: Path,
    queue_size: int,
) -> int:
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, queue_size))

    async def produce() -> int:
        count = 0
        async for document in collection.find():
            await queue.put(encoder.encode(document))
            count += 1
        await queue.put(_END)
        return count

    async def in_thread(func: Any, *args: Any) -> None:
        # A worker thread cannot be interrupted; let it finish before the
        # handle is closed, even when the consumer is cancelled.
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            await asyncio.shield(future)
        except asyncio.CancelledError:
            try:
                await future
            except OSError as exc:
                logger.warning("backup_write_abandoned", path=str(destination), error=str(exc))
            raise

    async def consume() -> None:
        buffer = bytearray()
        while True:
            chunk = await queue.get()
            if chunk is _END:
                break
            buffer += chunk
            if len(buffer) >= FLUSH_BYTES:
                await in_thread(handle.write, bytes(buffer))
                buffer.clear()
        if buffer:
            await in_thread(handle.write, bytes(buffer))
        await in_thread(handle.flush)

    producer = asyncio.create_task(produce())
    consumer = asyncio.create_task(consume())
    tasks = {producer, consumer}
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    if producer in done and producer.exception() is not None:
        exc = producer.exception()
        logger.error("collection_read_failed", collection=collection.name, error=str(exc))
        raise StreamError(f"Can't back up {collection.name}. {exc}") from exc
    if consumer in done and consumer.exception() is not None:
        exc = consumer.exception()
        logger.error("backup_write_failed", path=str(destination), error=str(exc))
        raise StreamError(f"Can't write {destination}. {exc}") from exc
    return producer.result()


def _read_documents(source: Path, adapter: FormatAdapter) -> list[dict[str, Any]]:
    with source.open("r", encoding="utf-8", newline="") as stream:
        return adapter.decode(stream)


async def restore_collection(
    collection: Any,
    source: Path,
    adapter: FormatAdapter,
    *,
    progress: Progress,
) -> TransferResult:
    """Load ``source`` into ``collection`` with one ordered bulk write.

    Insert failures reported by the server are counted in the result, not
    raised. An unreadable or undecodable file raises :class:`StreamError`.
    """

    name = collection.name
    progress.start()
    try:
        try:
            documents = await asyncio.to_thread(_read_documents, source, adapter)
        except (OSError, UnicodeDecodeError, FormatDecodeError) as exc:
            logger.error("restore_read_failed", collection=name, path=str(source), error=str(exc))
            raise StreamError(f"Can't restore {name}. {exc}") from exc

        if not documents:
            return TransferResult(collection=name, success=True)

        requests = [InsertOne(document) for document in documents]
        try:
            result = await collection.bulk_write(requests, ordered=True)
        except BulkWriteError as exc:
            return _bulk_failure(name, exc)
        except (PyMongoError, BSONError, OverflowError) as exc:
            logger.error("restore_write_failed", collection=name, error=str(exc))
            raise StreamError(f"Can't restore {name}. {exc}") from exc
    finally:
        progress.stop()

    return TransferResult(collection=name, success=True, item_count=result.inserted_count)


def _bulk_failure(name: str, exc: BulkWriteError) -> TransferResult:
    details = exc.details or {}
    write_errors = details.get("writeErrors") or []
    concern_errors = details.get("writeConcernErrors") or []
    first = (write_errors or concern_errors or [{}])[0]
    logger.warning(
        "restore_write_errors",
        collection=name,
        write_errors=len(write_errors),
        write_concern_errors=len(concern_errors),
    )
    return TransferResult(
        collection=name,
        success=False,
        item_count=int(details.get("nInserted", 0)),
        error_count=len(write_errors) + len(concern_errors),
        detail=first.get("errmsg") or str(exc),
    )
