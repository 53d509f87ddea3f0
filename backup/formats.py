"""Serialization formats used for collection dumps.

The set of formats is closed: :class:`DataFormat` enumerates every format the
tool can write, and :class:`FormatRegistry` pairs each member with the
:class:`FormatAdapter` that encodes documents for backup and decodes files for
restore. The registry is immutable and refuses to be built with a member left
without an adapter, so a format selected on the command line always has both
directions available.

Both formats store values as MongoDB relaxed Extended JSON so ``ObjectId``,
dates and binary payloads survive a backup/restore round trip.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol, TextIO

import structlog
from bson import json_util
from bson.errors import BSONError

logger = structlog.get_logger(__name__)

JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS


class DataFormat(str, Enum):
    """On-disk serialization formats, valued by their file extension."""

    JSON = "json"
    CSV = "csv"

    def __str__(self) -> str:
        return self.value


class FormatDecodeError(ValueError):
    """Raised when a backup file cannot be decoded into documents."""


class DocumentEncoder(Protocol):
    def encode(self, document: Mapping[str, Any]) -> bytes: ...


class JsonLinesEncoder:
    """Encode each document as one Extended JSON line."""

    def encode(self, document: Mapping[str, Any]) -> bytes:
        return (json_util.dumps(document, json_options=JSON_OPTIONS) + "\n").encode("utf-8")


class CsvEncoder:
    """Encode documents as CSV rows with a header taken from the first document.

    Cells hold the Extended JSON form of each value; an empty cell marks a
    field missing from that document. Fields that only appear after the
    header has been written cannot be represented and are dropped.
    """

    def __init__(self) -> None:
        self._fields: list[str] | None = None
        self._dropped: set[str] = set()

    def encode(self, document: Mapping[str, Any]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if self._fields is None:
            self._fields = [str(key) for key in document.keys()]
            writer.writerow(self._fields)
        extra = [
            key for key in document
            if key not in self._fields and key not in self._dropped
        ]
        if extra:
            self._dropped.update(extra)
            logger.warning("csv_fields_dropped", fields=extra, header=self._fields)
        writer.writerow(
            [_encode_cell(document[name]) if name in document else "" for name in self._fields]
        )
        return buffer.getvalue().encode("utf-8")


def _encode_cell(value: Any) -> str:
    return json_util.dumps(value, json_options=JSON_OPTIONS)


def _decode_value(raw: str, where: str) -> Any:
    try:
        return json_util.loads(raw, json_options=JSON_OPTIONS)
    except (ValueError, TypeError, OverflowError, BSONError) as exc:
        raise FormatDecodeError(f"{where}: {exc}") from exc


def decode_json(stream: TextIO) -> list[dict[str, Any]]:
    """Return documents from Extended JSON lines or a single JSON array."""

    text = stream.read()
    if text.lstrip().startswith("["):
        payload = _decode_value(text, "array")
        if not all(isinstance(item, dict) for item in payload):
            raise FormatDecodeError("array: every item must be an object")
        return payload

    documents: list[dict[str, Any]] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        document = _decode_value(line, f"line {lineno}")
        if not isinstance(document, dict):
            raise FormatDecodeError(f"line {lineno}: expected an object")
        documents.append(document)
    return documents


def decode_csv(stream: TextIO) -> list[dict[str, Any]]:
    """Return documents from CSV rows written by :class:`CsvEncoder`."""

    reader = csv.DictReader(stream)
    documents: list[dict[str, Any]] = []
    try:
        for row in reader:
            document: dict[str, Any] = {}
            for name, cell in row.items():
                if name is None:
                    raise FormatDecodeError(
                        f"line {reader.line_num}: more cells than header fields"
                    )
                if cell is None or cell == "":
                    continue
                document[name] = _decode_value(cell, f"line {reader.line_num}, field {name}")
            documents.append(document)
    except csv.Error as exc:
        raise FormatDecodeError(f"line {reader.line_num}: {exc}") from exc
    return documents


@dataclass(frozen=True, slots=True)
class FormatAdapter:
    """Encode/decode pair for one :class:`DataFormat`."""

    format: DataFormat
    encoder_factory: Callable[[], DocumentEncoder]
    decoder: Callable[[TextIO], list[dict[str, Any]]]

    @property
    def extension(self) -> str:
        return self.format.value

    def encoder(self) -> DocumentEncoder:
        """Return a fresh encoder; encoders may keep per-file state."""

        return self.encoder_factory()

    def decode(self, stream: TextIO) -> list[dict[str, Any]]:
        return self.decoder(stream)

    def filename(self, collection_name: str) -> str:
        return f"{collection_name}.{self.extension}"

    def matches(self, filename: str) -> bool:
        suffix = f".{self.extension}"
        return filename.endswith(suffix) and len(filename) > len(suffix)

    def collection_name(self, filename: str) -> str:
        return filename[: -(len(self.extension) + 1)]


@dataclass(frozen=True)
class FormatRegistry:
    """Immutable mapping from every :class:`DataFormat` to its adapter."""

    adapters: Mapping[DataFormat, FormatAdapter]

    def __post_init__(self) -> None:
        missing = [fmt.value for fmt in DataFormat if fmt not in self.adapters]
        if missing:
            raise ValueError(f"no adapter registered for: {', '.join(missing)}")
        for fmt, adapter in self.adapters.items():
            if adapter.format is not fmt:
                raise ValueError(f"adapter for {adapter.format} registered as {fmt}")
        object.__setattr__(self, "adapters", MappingProxyType(dict(self.adapters)))

    @classmethod
    def default(cls) -> "FormatRegistry":
        return cls(
            {
                DataFormat.JSON: FormatAdapter(DataFormat.JSON, JsonLinesEncoder, decode_json),
                DataFormat.CSV: FormatAdapter(DataFormat.CSV, CsvEncoder, decode_csv),
            }
        )

    @property
    def extensions(self) -> tuple[str, ...]:
        return tuple(fmt.value for fmt in self.adapters)

    def adapter(self, fmt: DataFormat | str) -> FormatAdapter:
        """Return the adapter for ``fmt``; unknown identifiers raise ``ValueError``."""

        return self.adapters[DataFormat(fmt)]

    def detect(self, filename: str) -> FormatAdapter | None:
        """Return the adapter whose extension ends ``filename``, if any."""

        for adapter in self.adapters.values():
            if adapter.matches(filename):
                return adapter
        return None
