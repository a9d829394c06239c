"""Process-wide table of foreign ids known to map onto local substitutes.

The cache is created once at startup and injected into every resolver. It loads lazily
from its ``MappingStore`` on first use and is append-only afterwards: ``record`` never
replaces an existing pair, and only ``clear`` removes entries. Persistence problems are
logged and swallowed so that a run can continue on the in-memory copy. A copy that
started without the persisted entries is never written back until those entries have
been read and merged in.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from metaprov.domain.errors import ProvisioningError
from metaprov.domain.model import IdMappingEntry

if TYPE_CHECKING:
    from collections.abc import Iterable

    from metaprov.domain.model import ResourceType
    from metaprov.domain.ports.storage import MappingStore

log = getLogger(__name__)


class IdMappingCache:
    def __init__(self, store: MappingStore | None = None) -> None:
        self._store = store
        self._entries: dict[tuple[ResourceType, str], IdMappingEntry] | None = None
        self._dirty = False
        self._load_failed = False

    @property
    def loaded(self) -> bool:
        return self._entries is not None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def load_all(self) -> dict[tuple[ResourceType, str], IdMappingEntry]:
        """Load persisted entries once; later calls return the in-memory table."""

        if self._entries is not None:
            return self._entries
        self._entries = {}
        if self._store is not None:
            self._load_failed = not self._merge_stored(self._entries)
            log.info("Loaded %s id mapping(s)", len(self._entries))
        return self._entries

    def _merge_stored(self, entries: dict[tuple[ResourceType, str], IdMappingEntry]) -> bool:
        """Fold persisted entries into ``entries``; persisted pairs win on collision."""

        if self._store is None:
            return True
        try:
            stored = self._store.load()
        except ProvisioningError as exc:
            log.warning("Could not load id mappings: %s", exc)
            return False
        merged: dict[tuple[ResourceType, str], IdMappingEntry] = {}
        for entry in stored:
            merged.setdefault(entry.key, entry)
        for key, entry in entries.items():
            merged.setdefault(key, entry)
        entries.clear()
        entries.update(merged)
        return True

    def lookup(self, resource_type: ResourceType, foreign_id: str) -> str | None:
        entry = self.load_all().get((resource_type, foreign_id))
        return entry.local_id if entry is not None else None

    def record(self, resource_type: ResourceType, foreign_id: str, local_id: str) -> bool:
        """Add a mapping; return ``False`` when the pair is already known."""

        if foreign_id == local_id:
            return False
        entries = self.load_all()
        key = (resource_type, foreign_id)
        existing = entries.get(key)
        if existing is not None:
            if existing.local_id != local_id:
                log.debug(
                    "Keeping existing mapping %s %s -> %s (ignoring %s)",
                    resource_type,
                    foreign_id,
                    existing.local_id,
                    local_id,
                )
            return False
        entries[key] = IdMappingEntry(
            resource_type=resource_type,
            foreign_id=foreign_id,
            local_id=local_id,
        )
        self._dirty = True
        log.debug("Recorded mapping %s %s -> %s", resource_type, foreign_id, local_id)
        return True

    def seed_unreachable(
        self,
        resource_type: ResourceType,
        foreign_ids: Iterable[str],
        local_id: str,
    ) -> int:
        """Map each known-unreachable foreign id onto ``local_id``."""

        return sum(self.record(resource_type, foreign_id, local_id) for foreign_id in foreign_ids)

    def entries(self) -> list[IdMappingEntry]:
        return sorted(
            self.load_all().values(),
            key=lambda entry: (entry.resource_type.level, entry.foreign_id),
        )

    def persist(self) -> bool:
        """Write all entries to the store; failures are logged, never raised."""

        if self._store is None or self._entries is None:
            return False
        if self._load_failed:
            if not self._merge_stored(self._entries):
                log.warning(
                    "Not persisting %s id mapping(s): the stored copy could not be read",
                    len(self._entries),
                )
                return False
            self._load_failed = False
        try:
            self._store.save(self.entries())
        except ProvisioningError as exc:
            log.warning("Could not persist %s id mapping(s): %s", len(self._entries), exc)
            return False
        self._dirty = False
        return True

    def clear(self) -> None:
        """Drop every entry, in memory and in the store."""

        self._entries = {}
        self._dirty = False
        self._load_failed = False
        if self._store is not None:
            self._store.clear()
        log.info("Cleared id mappings")

    def __len__(self) -> int:
        return len(self.load_all())

    def __contains__(self, key: object) -> bool:
        return key in self.load_all()
