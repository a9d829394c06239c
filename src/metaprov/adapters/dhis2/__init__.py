"""Public interface for the DHIS2 adapter."""

from __future__ import annotations

from .client import DHIS2Client, DHIS2ResponseError
from .datastore import DataStoreMappingStore, DataStoreRunRecorder, DHIS2KeyValueStore
from .gateway import DHIS2MetadataGateway, DHIS2OrganisationUnitLookup, build_gateways
from .schema import MappingDocument, MetadataObject, WebMessage

__all__ = [
    "DHIS2Client",
    "DHIS2KeyValueStore",
    "DHIS2MetadataGateway",
    "DHIS2OrganisationUnitLookup",
    "DHIS2ResponseError",
    "DataStoreMappingStore",
    "DataStoreRunRecorder",
    "MappingDocument",
    "MetadataObject",
    "WebMessage",
    "build_gateways",
]
