"""Data-store backed persistence for id mappings and run bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import ValidationError

from metaprov.domain.model import IdMappingEntry, ResourceType

from .client import DHIS2ResponseError
from .schema import MappingDocument, MappingValue

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaprov.domain.ports.storage import KeyValueStore

    from .client import DHIS2Client

log = getLogger(__name__)

RUN_KEY_PREFIX = "run-"

_TYPES_BY_COLLECTION: dict[str, ResourceType] = {
    resource_type.collection: resource_type for resource_type in ResourceType
}


@dataclass(slots=True)
class DHIS2KeyValueStore:
    """``KeyValueStore`` over ``/api/dataStore``; an absent key reads as ``None``."""

    client: DHIS2Client

    def get(self, namespace: str, key: str) -> object | None:
        return self.client.datastore_get(namespace, key)

    def put(self, namespace: str, key: str, value: object) -> None:
        self.client.datastore_put(namespace, key, value)

    def delete(self, namespace: str, key: str) -> bool:
        return self.client.datastore_delete(namespace, key)


@dataclass(slots=True)
class DataStoreMappingStore:
    store: KeyValueStore
    namespace: str
    key: str

    def load(self) -> list[IdMappingEntry]:
        stored = self.store.get(self.namespace, self.key)
        if stored is None:
            return []
        try:
            document = MappingDocument.from_stored(stored)
        except ValidationError as exc:
            raise DHIS2ResponseError(
                f"Stored id mappings at {self.namespace}/{self.key} are malformed"
            ) from exc

        entries: list[IdMappingEntry] = []
        for collection, mappings in document.collections.items():
            resource_type = _TYPES_BY_COLLECTION.get(collection)
            if resource_type is None:
                log.warning("Skipping id mappings for unknown collection %r", collection)
                continue
            entries.extend(
                IdMappingEntry(
                    resource_type=resource_type,
                    foreign_id=foreign_id,
                    local_id=value.local_id,
                    discovered_at=value.discovered_at,
                )
                for foreign_id, value in mappings.items()
            )
        return entries

    def save(self, entries: Iterable[IdMappingEntry]) -> None:
        collections: dict[str, dict[str, MappingValue]] = {}
        for entry in entries:
            collections.setdefault(entry.resource_type.collection, {})[entry.foreign_id] = (
                MappingValue(local_id=entry.local_id, discovered_at=entry.discovered_at)
            )
        document = MappingDocument(collections=collections)
        self.store.put(self.namespace, self.key, document.to_stored())

    def clear(self) -> None:
        removed = self.store.delete(self.namespace, self.key)
        log.debug("Deleted %s/%s: %s", self.namespace, self.key, removed)


@dataclass(slots=True)
class DataStoreRunRecorder:
    store: KeyValueStore
    namespace: str

    def save_run(self, run_id: str, document: Mapping[str, object]) -> None:
        self.store.put(self.namespace, f"{RUN_KEY_PREFIX}{run_id}", dict(document))
