"""Ports for the namespaced remote key-value store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaprov.domain.model import IdMappingEntry


class KeyValueStore(Protocol):
    def get(self, namespace: str, key: str) -> object | None:
        """Return the stored value, or ``None`` when the namespace or key is absent."""
        ...

    def put(self, namespace: str, key: str, value: object) -> None:
        """Create or replace the value under ``key``."""
        ...

    def delete(self, namespace: str, key: str) -> bool:
        """Delete ``key``; return whether something was removed."""
        ...


class MappingStore(Protocol):
    """Persistence for id-mapping entries."""

    def load(self) -> list[IdMappingEntry]: ...

    def save(self, entries: Iterable[IdMappingEntry]) -> None: ...

    def clear(self) -> None: ...


class RunRecordStore(Protocol):
    """Bookkeeping for finished pipeline runs."""

    def save_run(self, run_id: str, document: Mapping[str, object]) -> None: ...


__all__ = ["KeyValueStore", "MappingStore", "RunRecordStore"]
