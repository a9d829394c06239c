"""Per-resource-type gateways onto DHIS2 metadata collections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from metaprov.domain.model import MetadataRecord, ResourceType

if TYPE_CHECKING:
    from collections.abc import Mapping

    from metaprov.domain.model import SearchField
    from metaprov.domain.ports.metadata import MetadataGateway, ReferenceLookup

    from .client import DHIS2Client
    from .schema import MetadataObject

ORGANISATION_UNITS = "organisationUnits"


def to_record(obj: MetadataObject) -> MetadataRecord:
    return MetadataRecord(
        id=obj.id,
        name=obj.name or obj.display_name,
        code=obj.code,
        short_name=obj.short_name,
    )


@dataclass(slots=True)
class DHIS2MetadataGateway:
    client: DHIS2Client
    resource_type: ResourceType

    def fetch_by_id(self, object_id: str) -> MetadataRecord:
        return to_record(self.client.get_object(self.resource_type.collection, object_id))

    def search_by_field(self, field: SearchField, value: str) -> tuple[MetadataRecord, ...]:
        found = self.client.search(self.resource_type.collection, field.value, value)
        return tuple(to_record(obj) for obj in found)

    def create(self, payload: Mapping[str, Any]) -> str:
        return self.client.create(self.resource_type.collection, payload)


@dataclass(slots=True)
class DHIS2OrganisationUnitLookup:
    client: DHIS2Client

    def fetch_by_id(self, object_id: str) -> MetadataRecord:
        return to_record(self.client.get_object(ORGANISATION_UNITS, object_id))


def build_gateways(client: DHIS2Client) -> dict[ResourceType, DHIS2MetadataGateway]:
    return {
        resource_type: DHIS2MetadataGateway(client=client, resource_type=resource_type)
        for resource_type in ResourceType
    }


if TYPE_CHECKING:
    _gateway_check: MetadataGateway = DHIS2MetadataGateway(
        client=None,  # type: ignore[arg-type]
        resource_type=ResourceType.OPTION,
    )
    _lookup_check: ReferenceLookup = DHIS2OrganisationUnitLookup(
        client=None,  # type: ignore[arg-type]
    )
