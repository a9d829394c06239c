"""DHIS2 response and data-store document schemas."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

IDENTIFYING_FIELDS = "id,name,code,shortName"


class DHIS2BaseModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MetadataObject(DHIS2BaseModel):
    id: str
    name: str | None = None
    code: str | None = None
    short_name: str | None = Field(default=None, alias="shortName")
    display_name: str | None = Field(default=None, alias="displayName")


class ErrorReport(DHIS2BaseModel):
    message: str
    error_code: str | None = Field(default=None, alias="errorCode")
    main_klass: str | None = Field(default=None, alias="mainKlass")
    error_property: str | None = Field(default=None, alias="errorProperty")


class ObjectReport(DHIS2BaseModel):
    uid: str | None = None
    klass: str | None = None
    response_type: str | None = Field(default=None, alias="responseType")
    error_reports: list[ErrorReport] = Field(default_factory=list, alias="errorReports")


class WebMessage(DHIS2BaseModel):
    """Envelope DHIS2 wraps around write responses and most errors."""

    http_status: str | None = Field(default=None, alias="httpStatus")
    http_status_code: int | None = Field(default=None, alias="httpStatusCode")
    status: str | None = None
    message: str | None = None
    response: ObjectReport | None = None

    def describe(self) -> str:
        parts: list[str] = []
        if self.message:
            parts.append(self.message)
        if self.response is not None:
            parts.extend(report.message for report in self.response.error_reports)
        return "; ".join(parts) or (self.http_status or "unknown error")


class MappingValue(DHIS2BaseModel):
    local_id: str = Field(alias="localId")
    discovered_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), alias="discoveredAt"
    )


class MappingDocument(DHIS2BaseModel):
    """Id mappings as stored in the data store, grouped by remote collection.

    Older documents store a bare local id per foreign id; both shapes are accepted.
    """

    collections: dict[str, dict[str, MappingValue]] = Field(default_factory=dict)

    @field_validator("collections", mode="before")
    @classmethod
    def _accept_bare_ids(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        normalized: dict[str, object] = {}
        for collection, mappings in value.items():
            if not isinstance(mappings, dict):
                normalized[collection] = mappings
                continue
            normalized[collection] = {
                foreign_id: {"localId": local} if isinstance(local, str) else local
                for foreign_id, local in mappings.items()
            }
        return normalized

    @classmethod
    def from_stored(cls, payload: object) -> MappingDocument:
        if isinstance(payload, dict) and "collections" not in payload:
            payload = {"collections": payload}
        return cls.model_validate(payload)

    def to_stored(self) -> dict[str, dict[str, dict[str, str]]]:
        return {
            collection: {
                foreign_id: {
                    "localId": value.local_id,
                    "discoveredAt": value.discovered_at.isoformat(),
                }
                for foreign_id, value in mappings.items()
            }
            for collection, mappings in self.collections.items()
        }
