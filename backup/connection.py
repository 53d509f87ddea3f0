"""MongoDB connection lifecycle for a single backup or restore run."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConfigurationError, PyMongoError

from .errors import DatabaseConnectionError

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 5000


def _client(uri: str, timeout_ms: int) -> AsyncIOMotorClient:
    try:
        return AsyncIOMotorClient(uri, serverSelectionTimeoutMS=timeout_ms)
    except (ConfigurationError, ValueError) as exc:
        logger.error("mongo_client_init_failed", error=str(exc))
        raise DatabaseConnectionError(f"Invalid connection string. {exc}") from exc


async def _ping(client: AsyncIOMotorClient) -> None:
    try:
        await client.admin.command("ping")
    except PyMongoError as exc:
        logger.error("mongo_ping_failed", error=str(exc))
        raise DatabaseConnectionError(f"Can't connect to database. {exc}") from exc


async def validate_connection(uri: str, *, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
    """Fail fast with :class:`DatabaseConnectionError` if ``uri`` is unreachable.

    Uses a throwaway client, independent from the one opened by
    :func:`connect` for the actual transfer.
    """

    client = _client(uri, timeout_ms)
    try:
        await _ping(client)
    finally:
        client.close()
    logger.info("mongo_connection_validated")


@asynccontextmanager
async def connect(
    uri: str,
    database: str | None = None,
    *,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> AsyncIterator[AsyncIOMotorDatabase]:
    """Yield a handle to ``database`` and close the client afterwards.

    When ``database`` is empty the default database named in ``uri`` is used.
    No retries are attempted.
    """

    client = _client(uri, timeout_ms)
    try:
        await _ping(client)
        if database:
            db = client[database]
        else:
            try:
                db = client.get_default_database()
            except ConfigurationError as exc:
                raise DatabaseConnectionError("No database name given") from exc
        logger.debug("mongo_connected", database=db.name)
        yield db
    finally:
        client.close()
