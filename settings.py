"""Application settings models."""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

from backup.formats import DataFormat
from models import OperationConfig


class MongoSettings(BaseSettings):
    """Settings for MongoDB connection.

    Environment variables follow the ``MONGO_`` prefix. ``MONGO_URI`` takes
    precedence over the individual ``MONGO_HOST``/``MONGO_PORT``/credential
    variables when set.
    """

    uri: str | None = None
    host: str = "localhost"
    port: int = 27017
    username: str | None = None
    password: str | None = None
    database: str = "test"
    auth: str = "admin"
    timeout_ms: int = 5000

    model_config = ConfigDict(extra="ignore", env_prefix="MONGO_")

    def resolved_uri(self) -> str:
        """Return ``uri`` or build one from host, port and credentials."""

        if self.uri:
            return self.uri
        has_user = self.username is not None and str(self.username) != ""
        has_pass = self.password is not None and str(self.password) != ""
        if has_user and has_pass:
            user = quote_plus(str(self.username))
            passwd = quote_plus(str(self.password))
            return f"mongodb://{user}:{passwd}@{self.host}:{self.port}/{self.auth}"
        return f"mongodb://{self.host}:{self.port}"


class Settings(BaseSettings):
    """Top level settings loaded from ``.env``.

    ``BACKUP_PATH``, ``BACKUP_FORMAT`` and friends configure the tool; the
    nested :class:`MongoSettings` reads its own ``MONGO_`` variables.
    """

    path: str = "./backups/"
    format: DataFormat = DataFormat.JSON
    queue_size: int = Field(default=1000, ge=1)
    log_level: str = "INFO"
    log_json: bool = False

    mongo: MongoSettings = Field(default_factory=MongoSettings)

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BACKUP_",
        case_sensitive=False,
        extra="ignore",
    )

    def operation_config(
        self,
        *,
        uri: str | None = None,
        database: str | None = None,
        path: str | None = None,
        format: DataFormat | str | None = None,
    ) -> OperationConfig:
        """Build an :class:`OperationConfig`, preferring explicit overrides."""

        return OperationConfig(
            uri=uri or self.mongo.resolved_uri(),
            database=database or self.mongo.database,
            path=path or self.path,
            format=format or self.format,
        )


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached application settings."""

    return Settings()
