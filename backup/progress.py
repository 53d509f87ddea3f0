"""Transient progress indicators shown while a collection is transferred."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

import structlog
from rich.console import Console
from rich.status import Status

logger = structlog.get_logger(__name__)


class Progress(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


ProgressFactory = Callable[[str], Progress]


class Spinner:
    """Console spinner labelled with the collection being transferred."""

    def __init__(self, label: str, *, console: Console | None = None) -> None:
        self.label = label
        self._status = Status(label, console=console or Console(stderr=True), spinner="dots")
        self._running = False

    def start(self) -> None:
        if not self._running:
            self._status.start()
            self._running = True

    def stop(self) -> None:
        if self._running:
            self._status.stop()
            self._running = False


class SilentProgress:
    """Progress indicator that only logs, used for ``--quiet`` runs and tests."""

    def __init__(self, label: str) -> None:
        self.label = label
        self.running = False

    def start(self) -> None:
        self.running = True
        logger.debug("transfer_started", label=self.label)

    def stop(self) -> None:
        self.running = False
        logger.debug("transfer_stopped", label=self.label)
