"""Operator-facing progress channel."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

ProgressCallback = Callable[[str], None]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProgressReporter:
    """Forward human-readable status lines to a callback and to the log.

    The callback is purely observational; its return value is ignored.
    """

    callback: ProgressCallback | None = None
    channel: logging.Logger = field(default=logger)

    def __call__(self, message: str, *, level: int = logging.INFO) -> None:
        self.channel.log(level, message)
        if self.callback is not None:
            self.callback(message)

    def warning(self, message: str) -> None:
        self(message, level=logging.WARNING)

    def error(self, message: str) -> None:
        self(message, level=logging.ERROR)


def as_reporter(progress: ProgressReporter | ProgressCallback | None) -> ProgressReporter:
    if isinstance(progress, ProgressReporter):
        return progress
    return ProgressReporter(callback=progress)


__all__ = ["ProgressCallback", "ProgressReporter", "as_reporter"]
