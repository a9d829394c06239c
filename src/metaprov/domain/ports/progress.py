"""Port for the presentation layer receiving progress and log events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from metaprov.domain.pipeline.run import LogEntry, ProgressEvent


@runtime_checkable
class ProgressSink(Protocol):
    def on_progress(self, event: ProgressEvent) -> None: ...

    def on_log(self, entry: LogEntry) -> None: ...


class NullSink:
    """Sink that discards everything."""

    def on_progress(self, event: ProgressEvent) -> None:
        return None

    def on_log(self, entry: LogEntry) -> None:
        return None


__all__ = ["NullSink", "ProgressSink"]
