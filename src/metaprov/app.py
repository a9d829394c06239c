"""Application orchestration entry points."""

from __future__ import annotations

import time
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from metaprov.adapters.dhis2 import (
    DataStoreMappingStore,
    DataStoreRunRecorder,
    DHIS2Client,
    DHIS2KeyValueStore,
    DHIS2OrganisationUnitLookup,
    build_gateways,
)
from metaprov.config import get_dhis2_config, get_provisioning_config
from metaprov.domain.identifiers import generate_uids
from metaprov.domain.model import ResourceType
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
    from collections.abc import Callable

    from metaprov.adapters.dhis2.client import ClientFactory
    from metaprov.config import DHIS2Config, ProvisioningConfig
    from metaprov.domain.model import IdMappingEntry
    from metaprov.domain.pipeline import CancellationToken, RunResult
    from metaprov.domain.ports import ProgressSink
    from metaprov.domain.templates import ProvisioningRequest

log = getLogger(__name__)


@dataclass(slots=True)
class ProvisioningServices:
    """Process-wide collaborators, created once at startup."""

    settings: ProvisioningConfig
    client: DHIS2Client
    cache: IdMappingCache
    fallbacks: FallbackRegistry
    orchestrator: ProvisioningOrchestrator

    def seed_known_unreachable(self) -> int:
        if not self.settings.known_unreachable:
            return 0
        seeded = self.fallbacks.seed_cache(self.cache, self.settings.known_unreachable)
        log.info("Seeded %s known-unreachable id mapping(s)", seeded)
        return seeded


def build_services(
    *,
    dhis2_config: DHIS2Config | None = None,
    settings: ProvisioningConfig | None = None,
    client_factory: ClientFactory | None = None,
    sink: ProgressSink | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisioningServices:
    """Wire the DHIS2 adapters into the provisioning engine."""

    effective_settings = settings or get_provisioning_config()
    client = DHIS2Client(
        config=dhis2_config or get_dhis2_config(),
        client_factory=client_factory,
    )
    store = DHIS2KeyValueStore(client=client)
    cache = IdMappingCache(
        DataStoreMappingStore(
            store=store,
            namespace=effective_settings.namespace,
            key=effective_settings.mapping_key,
        )
    )
    controller = RetryController(
        BackoffPolicy(
            base_seconds=effective_settings.backoff_base_seconds,
            max_attempts=effective_settings.max_attempts,
        ),
        sleep=sleep,
    )
    gateways = build_gateways(client)
    fallbacks = FallbackRegistry(
        gateways,
        controller,
        known_ids={ResourceType.COMBINATION: effective_settings.default_combination_id},
    )
    resolver = ObjectResolver(
        gateways,
        cache=cache,
        controller=controller,
        fallbacks=fallbacks,
        conflict_retries=effective_settings.conflict_retries,
    )
    orchestrator = ProvisioningOrchestrator(
        resolver=resolver,
        composer=HierarchyComposer(effective_settings.default_combination_id),
        cache=cache,
        controller=controller,
        org_units=DHIS2OrganisationUnitLookup(client=client),
        sink=sink,
        run_records=DataStoreRunRecorder(store=store, namespace=effective_settings.namespace),
    )
    return ProvisioningServices(
        settings=effective_settings,
        client=client,
        cache=cache,
        fallbacks=fallbacks,
        orchestrator=orchestrator,
    )


def provision(
    request: ProvisioningRequest,
    *,
    services: ProvisioningServices | None = None,
    sink: ProgressSink | None = None,
    cancel: CancellationToken | None = None,
) -> RunResult:
    """Provision every variant of ``request`` against the configured DHIS2 instance."""

    effective = services or build_services(sink=sink)
    log.info(
        "Starting provisioning: context=%s, variants=%s, org_units=%s",
        request.context_name,
        ",".join(variant.key for variant in request.variants),
        len(request.org_unit_ids),
    )
    effective.seed_known_unreachable()
    result = effective.orchestrator.run(request, cancel=cancel)
    log.info(f"Finished provisioning run {result.run.run_id}: {result.summary}")
    return result


def show_mappings(*, services: ProvisioningServices | None = None) -> list[IdMappingEntry]:
    effective = services or build_services()
    return effective.cache.entries()


def clear_mappings(*, services: ProvisioningServices | None = None) -> int:
    """Delete every persisted id mapping; return how many were known."""

    effective = services or build_services()
    count = len(effective.cache)
    effective.cache.clear()
    return count


def generate_ids(count: int = 1) -> list[str]:
    return generate_uids(count)
