from __future__ import annotations

import pytest

from metaprov.domain.model import ResourceType
from metaprov.domain.reconciliation import (
    FallbackRegistry,
    IdMappingCache,
    ObjectResolver,
    RetryController,
)
from tests.helpers.fakes import (
    DEFAULT_COMBINATION_ID,
    FakeGateway,
    Harness,
    InMemoryKeyValueStore,
    make_gateways,
    make_harness,
    no_sleep_controller,
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DHIS2_BASE_URL",
        "DHIS2_TOKEN",
        "DHIS2_USERNAME",
        "DHIS2_PASSWORD",
        "METAPROV_NAMESPACE",
        "METAPROV_MAPPING_KEY",
        "METAPROV_DEFAULT_COMBINATION_ID",
        "METAPROV_BACKOFF_BASE_SECONDS",
        "METAPROV_MAX_ATTEMPTS",
        "METAPROV_CONFLICT_RETRIES",
        "METAPROV_RATE_LIMIT",
        "METAPROV_UNREACHABLE_IDS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def gateways() -> dict[ResourceType, FakeGateway]:
    return make_gateways()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def controller(sleeps: list[float]) -> RetryController:
    return no_sleep_controller(sleeps)


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def cache() -> IdMappingCache:
    return IdMappingCache()


@pytest.fixture
def fallbacks(
    gateways: dict[ResourceType, FakeGateway], controller: RetryController
) -> FallbackRegistry:
    return FallbackRegistry(
        gateways,
        controller,
        known_ids={ResourceType.COMBINATION: DEFAULT_COMBINATION_ID},
    )


@pytest.fixture
def resolver(
    gateways: dict[ResourceType, FakeGateway],
    cache: IdMappingCache,
    controller: RetryController,
    fallbacks: FallbackRegistry,
) -> ObjectResolver:
    suffixes = iter(("AAAAA", "BBBBB", "CCCCC", "DDDDD"))
    return ObjectResolver(
        gateways,
        cache=cache,
        controller=controller,
        fallbacks=fallbacks,
        suffix_factory=lambda: next(suffixes),
    )


@pytest.fixture
def harness() -> Harness:
    return make_harness()
