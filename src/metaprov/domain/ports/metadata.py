"""Ports for the remote metadata API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from metaprov.domain.model import MetadataRecord, ResourceType, SearchField


@runtime_checkable
class MetadataGateway(Protocol):
    """Find-or-create access to one resource type.

    Implementations raise ``RemoteStatusError`` / ``RemoteTransportError`` and leave
    classification to the retry controller.
    """

    resource_type: ResourceType

    def fetch_by_id(self, object_id: str) -> MetadataRecord: ...

    def search_by_field(self, field: SearchField, value: str) -> tuple[MetadataRecord, ...]: ...

    def create(self, payload: Mapping[str, Any]) -> str: ...


@runtime_checkable
class ReferenceLookup(Protocol):
    """Read-only access to objects the engine references but never creates."""

    def fetch_by_id(self, object_id: str) -> MetadataRecord: ...


__all__ = ["MetadataGateway", "ReferenceLookup"]
