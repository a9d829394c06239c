"""Core provisioning model (pure, dependency-light)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .identifiers import is_valid_uid

if TYPE_CHECKING:
    from collections.abc import Mapping


class ResourceType(StrEnum):
    OPTION = "option"
    GROUPING = "grouping"
    COMBINATION = "combination"
    MEASURABLE_ITEM = "measurable-item"
    COLLECTION = "collection"

    @property
    def collection(self) -> str:
        """Remote collection endpoint serving this resource type."""

        return _COLLECTIONS[self]

    @property
    def level(self) -> int:
        """Position in the dependency order; lower levels resolve first."""

        return _LEVELS[self]


_COLLECTIONS: dict[ResourceType, str] = {
    ResourceType.OPTION: "categoryOptions",
    ResourceType.GROUPING: "categories",
    ResourceType.COMBINATION: "categoryCombos",
    ResourceType.MEASURABLE_ITEM: "dataElements",
    ResourceType.COLLECTION: "dataSets",
}

_LEVELS: dict[ResourceType, int] = {
    resource_type: index for index, resource_type in enumerate(ResourceType)
}

DEPENDENCY_ORDER: tuple[ResourceType, ...] = tuple(
    sorted(ResourceType, key=lambda resource_type: resource_type.level)
)


class Origin(StrEnum):
    REUSED_EXISTING = "reused_existing"
    CREATED_NEW = "created_new"
    FALLBACK_SUBSTITUTED = "fallback_substituted"


class MatchedBy(StrEnum):
    """Which resolution step produced a ``ResolvedObject``."""

    MEMO = "memo"
    MAPPING = "mapping"
    ID = "id"
    CODE = "code"
    NAME = "name"
    SHORT_NAME = "short_name"
    CREATED = "created"
    FALLBACK = "fallback"


class SearchField(StrEnum):
    """Remote fields searchable by exact match, in precedence order."""

    CODE = "code"
    NAME = "name"
    SHORT_NAME = "shortName"

    @property
    def matched_by(self) -> MatchedBy:
        return {
            SearchField.CODE: MatchedBy.CODE,
            SearchField.NAME: MatchedBy.NAME,
            SearchField.SHORT_NAME: MatchedBy.SHORT_NAME,
        }[self]


SEARCH_PRECEDENCE: tuple[SearchField, ...] = (
    SearchField.CODE,
    SearchField.NAME,
    SearchField.SHORT_NAME,
)


@dataclass(frozen=True, slots=True)
class MetadataRecord:
    """Identifying fields of an object as returned by the remote API."""

    id: str
    name: str | None = None
    code: str | None = None
    short_name: str | None = None


@dataclass(frozen=True, slots=True, eq=False)
class ReconciliationTarget:
    """A single object to provision.

    Targets compare by identity so they can key per-run ledgers. Dependencies must sit
    strictly lower in ``DEPENDENCY_ORDER``, which keeps every hierarchy acyclic.
    """

    resource_type: ResourceType
    desired_name: str
    desired_code: str | None = None
    desired_short_name: str | None = None
    candidate_id: str | None = None
    payload_template: Mapping[str, Any] = field(default_factory=dict)
    dependencies: tuple[ReconciliationTarget, ...] = ()
    allow_create: bool = True

    def __post_init__(self) -> None:
        if not self.desired_name or not self.desired_name.strip():
            raise ValueError(f"{self.resource_type} target requires a name")
        for dependency in self.dependencies:
            if dependency.resource_type.level >= self.resource_type.level:
                raise ValueError(
                    f"{self.resource_type} cannot depend on {dependency.resource_type}"
                )

    @property
    def label(self) -> str:
        return self.desired_code or self.desired_name

    @property
    def lookup_id(self) -> str | None:
        """Candidate id if it is safe to use as a lookup key."""

        return self.candidate_id if is_valid_uid(self.candidate_id) else None

    @property
    def identity_key(self) -> tuple[object, ...]:
        """Key under which two targets denote the same remote object within a run."""

        if self.lookup_id is not None:
            return (self.resource_type, "id", self.lookup_id)
        if self.desired_code:
            return (self.resource_type, "code", self.desired_code)
        return (self.resource_type, "name", self.desired_name)

    def search_value(self, search_field: SearchField) -> str | None:
        if search_field is SearchField.CODE:
            return self.desired_code
        if search_field is SearchField.NAME:
            return self.desired_name
        return self.desired_short_name

    def walk(self) -> list[ReconciliationTarget]:
        """Return this target and all transitive dependencies, dependencies first."""

        ordered: list[ReconciliationTarget] = []
        seen: set[int] = set()

        def visit(node: ReconciliationTarget) -> None:
            if id(node) in seen:
                return
            seen.add(id(node))
            for dependency in node.dependencies:
                visit(dependency)
            ordered.append(node)

        visit(self)
        return ordered


@dataclass(frozen=True, slots=True)
class ResolvedObject:
    remote_id: str
    origin: Origin
    source_target: ReconciliationTarget
    matched_by: MatchedBy
    record: MetadataRecord | None = None

    @property
    def resource_type(self) -> ResourceType:
        return self.source_target.resource_type


@dataclass(frozen=True, slots=True)
class IdMappingEntry:
    resource_type: ResourceType
    foreign_id: str
    local_id: str
    discovered_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[ResourceType, str]:
        return (self.resource_type, self.foreign_id)


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
