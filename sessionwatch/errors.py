"""Keyed warnings and errors that persist until resolved."""
from __future__ import annotations

import logging
import time
from typing import Callable, Literal

from pydantic import BaseModel

logger = logging.getLogger("sessionwatch.errors")


class TrackedError(BaseModel):
    id: str
    type: Literal["error", "warning"] = "error"
    message: str
    timestamp: float = 0.0


Listener = Callable[[list[TrackedError]], None]


class ErrorTracker:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._errors: dict[str, TrackedError] = {}
        self._listeners: list[Listener] = []

    def on_change(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        snapshot = self.get_errors()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Error listener failed")

    def set_error(self, error_id: str, message: str, kind: Literal["error", "warning"] = "error") -> None:
        self._errors[error_id] = TrackedError(id=error_id, type=kind, message=message, timestamp=self._clock())
        self._notify()

    def clear_error(self, error_id: str) -> None:
        if self._errors.pop(error_id, None) is not None:
            self._notify()

    def has_error(self, error_id: str) -> bool:
        return error_id in self._errors

    def get_errors(self) -> list[TrackedError]:
        """Errors before warnings, newest first within each group."""
        return sorted(
            self._errors.values(),
            key=lambda e: (0 if e.type == "error" else 1, -e.timestamp),
        )

    def clear_all(self) -> None:
        self._errors.clear()
        self._notify()
