"""Pydantic models describing one backup or restore run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backup.formats import DataFormat


class OperationConfig(BaseModel):
    """Validated input for a single backup or restore operation.

    ``path`` is the root folder under which backups are created, or the
    backup folder to restore from.
    """

    uri: str = Field(min_length=1)
    database: str = Field(min_length=1)
    path: str = Field(min_length=1)
    format: DataFormat = DataFormat.JSON

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "uri": "mongodb://localhost:27017",
                "database": "shop",
                "path": "./backups/",
                "format": "json",
            }
        },
    )

    @field_validator("database")
    @classmethod
    def _check_database(cls, value: str) -> str:
        if "/" in value or "." in value or " " in value:
            raise ValueError("database name must not contain '/', '.' or spaces")
        return value
