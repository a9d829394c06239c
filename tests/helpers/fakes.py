"""In-memory stand-ins for the DHIS2 ports used across engine tests."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from metaprov.adapters.dhis2 import DataStoreMappingStore, DataStoreRunRecorder
from metaprov.domain.errors import RemoteFatalError, RemoteStatusError
from metaprov.domain.model import MetadataRecord, ResourceType, SearchField
from metaprov.domain.pipeline import ProvisioningOrchestrator
from metaprov.domain.reconciliation import (
    BackoffPolicy,
    FallbackRegistry,
    HierarchyComposer,
    IdMappingCache,
    ObjectResolver,
    RetryController,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaprov.domain.pipeline import LogEntry, ProgressEvent

DEFAULT_COMBINATION_ID = "bjDvmb4bfuf"
ORG_UNIT_IDS = ("ImspTQPwCqd", "O6uvpzGd5pu")
NAMESPACE = "dqa360"
MAPPING_KEY = "idMappings"

_SEARCH_ATTRIBUTES = {
    SearchField.CODE: "code",
    SearchField.NAME: "name",
    SearchField.SHORT_NAME: "short_name",
}


def not_found(what: str) -> RemoteStatusError:
    return RemoteStatusError(f"{what} not found", status_code=404)


@dataclass
class FakeGateway:
    """Metadata gateway over a dict, enforcing name/code/shortName uniqueness on create.

    Records in ``hidden`` exist for uniqueness checks but are invisible to fetch and
    search; ``reveal_on_conflict`` makes a clashing hidden record visible once a create
    has been rejected, which is how index lag behaves on a real server.
    ``references`` maps a payload key to the gateway its ``{"id": ...}`` entries must
    exist in; a dangling reference fails the create with a 404.
    """

    resource_type: ResourceType
    objects: dict[str, MetadataRecord] = field(default_factory=dict)
    hidden: set[str] = field(default_factory=set)
    reveal_on_conflict: bool = False
    always_conflict: bool = False
    rejected: dict[str, int] = field(default_factory=dict)
    failures: dict[str, list[Exception]] = field(default_factory=dict)
    calls: list[tuple[str, object]] = field(default_factory=list)
    created: list[dict[str, Any]] = field(default_factory=list)
    references: dict[str, FakeGateway] = field(default_factory=dict)

    def add(
        self,
        object_id: str,
        *,
        name: str | None = None,
        code: str | None = None,
        short_name: str | None = None,
        hidden: bool = False,
    ) -> MetadataRecord:
        record = MetadataRecord(id=object_id, name=name, code=code, short_name=short_name)
        self.objects[object_id] = record
        if hidden:
            self.hidden.add(object_id)
        return record

    def fail(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def calls_to(self, operation: str) -> list[object]:
        return [argument for name, argument in self.calls if name == operation]

    def _raise_queued(self, operation: str) -> None:
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _visible(self) -> list[MetadataRecord]:
        return [record for record in self.objects.values() if record.id not in self.hidden]

    def fetch_by_id(self, object_id: str) -> MetadataRecord:
        self.calls.append(("fetch", object_id))
        self._raise_queued("fetch")
        record = self.objects.get(object_id)
        if record is None or object_id in self.hidden:
            raise not_found(f"{self.resource_type} {object_id}")
        return record

    def search_by_field(self, field: SearchField, value: str) -> tuple[MetadataRecord, ...]:
        self.calls.append(("search", (field, value)))
        self._raise_queued("search")
        attribute = _SEARCH_ATTRIBUTES[field]
        return tuple(
            record for record in self._visible() if getattr(record, attribute) == value
        )

    def create(self, payload: Mapping[str, Any]) -> str:
        self.calls.append(("create", dict(payload)))
        self._raise_queued("create")
        name = payload.get("name")
        if name in self.rejected:
            raise RemoteStatusError(
                f"{self.resource_type} {name!r} rejected", status_code=self.rejected[name]
            )
        for key, target in self.references.items():
            missing = [
                ref["id"] for ref in payload.get(key, ()) if ref["id"] not in target.objects
            ]
            if missing:
                raise not_found(f"{target.resource_type} {missing[0]}")
        clashes = [
            record
            for record in self.objects.values()
            if (payload.get("code") and record.code == payload.get("code"))
            or record.name == name
            or (payload.get("shortName") and record.short_name == payload.get("shortName"))
        ]
        if self.always_conflict or clashes:
            if self.reveal_on_conflict:
                self.hidden.difference_update(record.id for record in clashes)
            raise RemoteStatusError(f"{self.resource_type} {name!r} conflicts", status_code=409)

        record = self.add(
            str(payload["id"]),
            name=name,
            code=payload.get("code"),
            short_name=payload.get("shortName"),
        )
        self.created.append(dict(payload))
        return record.id


def make_gateways(*, with_defaults: bool = True) -> dict[ResourceType, FakeGateway]:
    gateways = {resource_type: FakeGateway(resource_type) for resource_type in ResourceType}
    if with_defaults:
        gateways[ResourceType.COMBINATION].add(DEFAULT_COMBINATION_ID, name="default")
    return gateways


@dataclass
class FakeOrgUnits:
    known: set[str] = field(default_factory=lambda: set(ORG_UNIT_IDS))
    calls: list[str] = field(default_factory=list)

    def fetch_by_id(self, object_id: str) -> MetadataRecord:
        self.calls.append(object_id)
        if object_id not in self.known:
            raise not_found(f"organisation unit {object_id}")
        return MetadataRecord(id=object_id, name=f"Unit {object_id}")


@dataclass
class InMemoryKeyValueStore:
    """Key-value store that keeps JSON copies, like the remote data store does."""

    data: dict[tuple[str, str], object] = field(default_factory=dict)
    fail_writes: bool = False
    fail_reads: bool = False
    writes: list[tuple[str, str]] = field(default_factory=list)

    def get(self, namespace: str, key: str) -> object | None:
        if self.fail_reads:
            raise RemoteFatalError("data store unavailable", status_code=500)
        value = self.data.get((namespace, key))
        return json.loads(json.dumps(value)) if value is not None else None

    def put(self, namespace: str, key: str, value: object) -> None:
        if self.fail_writes:
            raise RemoteFatalError("data store is read-only", status_code=403)
        self.writes.append((namespace, key))
        self.data[(namespace, key)] = json.loads(json.dumps(value))

    def delete(self, namespace: str, key: str) -> bool:
        return self.data.pop((namespace, key), None) is not None

    def keys(self, namespace: str) -> list[str]:
        return sorted(key for stored_namespace, key in self.data if stored_namespace == namespace)


@dataclass
class RecordingSink:
    events: list[ProgressEvent] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def on_log(self, entry: LogEntry) -> None:
        self.logs.append(entry)

    def messages(self, variant: str | None = None) -> list[str]:
        return [entry.message for entry in self.logs if variant is None or entry.variant == variant]


def no_sleep_controller(
    sleeps: list[float] | None = None, *, max_attempts: int = 3
) -> RetryController:
    recorded = sleeps if sleeps is not None else []
    return RetryController(
        BackoffPolicy(base_seconds=1.0, max_attempts=max_attempts),
        sleep=recorded.append,
    )


@dataclass
class Harness:
    """Fully wired engine over in-memory fakes."""

    gateways: dict[ResourceType, FakeGateway]
    org_units: FakeOrgUnits
    store: InMemoryKeyValueStore
    sink: RecordingSink
    cache: IdMappingCache
    controller: RetryController
    fallbacks: FallbackRegistry
    resolver: ObjectResolver
    composer: HierarchyComposer
    orchestrator: ProvisioningOrchestrator
    sleeps: list[float]

    def created(self, resource_type: ResourceType) -> list[dict[str, Any]]:
        return self.gateways[resource_type].created

    def total_created(self) -> int:
        return sum(len(gateway.created) for gateway in self.gateways.values())


def make_harness(
    *,
    gateways: dict[ResourceType, FakeGateway] | None = None,
    org_units: Iterable[str] = ORG_UNIT_IDS,
    store: InMemoryKeyValueStore | None = None,
    sink: RecordingSink | None = None,
    conflict_retries: int = 1,
) -> Harness:
    effective_gateways = gateways if gateways is not None else make_gateways()
    effective_store = store if store is not None else InMemoryKeyValueStore()
    effective_sink = sink if sink is not None else RecordingSink()
    sleeps: list[float] = []
    controller = no_sleep_controller(sleeps)
    cache = IdMappingCache(
        DataStoreMappingStore(store=effective_store, namespace=NAMESPACE, key=MAPPING_KEY)
    )
    fallbacks = FallbackRegistry(
        effective_gateways,
        controller,
        known_ids={ResourceType.COMBINATION: DEFAULT_COMBINATION_ID},
    )
    resolver = ObjectResolver(
        effective_gateways,
        cache=cache,
        controller=controller,
        fallbacks=fallbacks,
        conflict_retries=conflict_retries,
    )
    composer = HierarchyComposer(DEFAULT_COMBINATION_ID)
    fake_org_units = FakeOrgUnits(known=set(org_units))
    orchestrator = ProvisioningOrchestrator(
        resolver=resolver,
        composer=composer,
        cache=cache,
        controller=controller,
        org_units=fake_org_units,
        sink=effective_sink,
        run_records=DataStoreRunRecorder(store=effective_store, namespace=NAMESPACE),
    )
    return Harness(
        gateways=effective_gateways,
        org_units=fake_org_units,
        store=effective_store,
        sink=effective_sink,
        cache=cache,
        controller=controller,
        fallbacks=fallbacks,
        resolver=resolver,
        composer=composer,
        orchestrator=orchestrator,
        sleeps=sleeps,
    )
