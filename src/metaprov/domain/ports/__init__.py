"""Ports connecting the provisioning core to its collaborators."""

from __future__ import annotations

from .metadata import MetadataGateway, ReferenceLookup
from .progress import NullSink, ProgressSink
from .storage import KeyValueStore, MappingStore, RunRecordStore

__all__ = [
    "KeyValueStore",
    "MappingStore",
    "MetadataGateway",
    "NullSink",
    "ProgressSink",
    "ReferenceLookup",
    "RunRecordStore",
]
