"""Render pipeline progress through the standard logging tree."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from metaprov.domain.model import LogLevel
from metaprov.domain.pipeline import StepStatus

if TYPE_CHECKING:
    from metaprov.domain.pipeline import LogEntry, ProgressEvent

_LEVELS: dict[LogLevel, int] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LoggingProgressSink:
    """Progress sink for terminal use; every event becomes one log record."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger("metaprov.progress")

    def on_progress(self, event: ProgressEvent) -> None:
        if event.status is StepStatus.RUNNING:
            self._log.debug("[%s] %s ...", event.variant, event.stage)
            return
        level = logging.ERROR if event.status is StepStatus.FAILED else logging.INFO
        if event.detail:
            self._log.log(
                level, "[%s] %s %s: %s", event.variant, event.stage, event.status, event.detail
            )
        else:
            self._log.log(level, "[%s] %s %s", event.variant, event.stage, event.status)

    def on_log(self, entry: LogEntry) -> None:
        prefix = f"[{entry.variant}] " if entry.variant else ""
        marker = "OK " if entry.level is LogLevel.SUCCESS else ""
        self._log.log(_LEVELS[entry.level], "%s%s%s", prefix, marker, entry.message)
