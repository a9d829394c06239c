"""System-provided default objects used when reconciliation cannot resolve a reference."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from metaprov.domain.model import ResourceType, SearchField

from .retry import CallState

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from metaprov.domain.model import MetadataRecord
    from metaprov.domain.ports.metadata import MetadataGateway

    from .cache import IdMappingCache
    from .retry import RetryController

log = getLogger(__name__)

DEFAULT_OBJECT_NAME = "default"

# Only the disaggregation hierarchy ships with system defaults.
FALLBACK_TYPES: frozenset[ResourceType] = frozenset(
    {ResourceType.OPTION, ResourceType.GROUPING, ResourceType.COMBINATION}
)


class FallbackRegistry:
    """Find and memoise the default object of each resource type.

    ``known_ids`` pins the fallback for a resource type to a specific id (the default
    combination has a well-known id on every instance); other types are discovered by
    searching for an object named ``default``.
    """

    def __init__(
        self,
        gateways: Mapping[ResourceType, MetadataGateway],
        controller: RetryController,
        *,
        known_ids: Mapping[ResourceType, str] | None = None,
    ) -> None:
        self._gateways = gateways
        self._controller = controller
        self._known_ids = dict(known_ids or {})
        self._resolved: dict[ResourceType, MetadataRecord | None] = {}

    def fallback_for(self, resource_type: ResourceType) -> MetadataRecord | None:
        if resource_type not in FALLBACK_TYPES:
            return None
        if resource_type in self._resolved:
            return self._resolved[resource_type]
        record = self._discover(resource_type)
        self._resolved[resource_type] = record
        if record is None:
            log.warning("No fallback object available for %s", resource_type)
        else:
            log.info("Fallback for %s is %s (%s)", resource_type, record.name, record.id)
        return record

    def _discover(self, resource_type: ResourceType) -> MetadataRecord | None:
        gateway = self._gateways.get(resource_type)
        if gateway is None:
            return None

        known_id = self._known_ids.get(resource_type)
        if known_id is not None:
            by_id = self._controller.attempt(
                lambda: gateway.fetch_by_id(known_id),
                description=f"fetch default {resource_type} {known_id}",
            )
            if by_id.ok:
                return by_id.value

        by_name = self._controller.attempt(
            lambda: gateway.search_by_field(SearchField.NAME, DEFAULT_OBJECT_NAME),
            description=f"search default {resource_type}",
        )
        if by_name.state is CallState.SUCCESS and by_name.value:
            return min(by_name.value, key=lambda record: record.id)
        return None

    def seed_cache(
        self,
        cache: IdMappingCache,
        known_unreachable: Mapping[str, Iterable[str]],
    ) -> int:
        """Map configured unreachable ids onto their type's fallback object."""

        seeded = 0
        for type_name, foreign_ids in known_unreachable.items():
            try:
                resource_type = ResourceType(type_name)
            except ValueError:
                log.warning("Ignoring unreachable ids for unknown resource type %r", type_name)
                continue
            fallback = self.fallback_for(resource_type)
            if fallback is None:
                continue
            seeded += cache.seed_unreachable(resource_type, foreign_ids, fallback.id)
        return seeded
