"""Load provisioning requests from JSON files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from metaprov.domain.templates import (
    DEFAULT_PERIOD_TYPE,
    DEFAULT_PUBLIC_ACCESS,
    DEFAULT_VARIANTS,
    CombinationTemplate,
    GroupingTemplate,
    ItemTemplate,
    OptionTemplate,
    ProvisioningRequest,
    Variant,
)

if TYPE_CHECKING:
    from os import PathLike


class RequestError(ValueError):
    """Raised when a request file cannot be read or does not match the schema."""


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, frozen=True, str_strip_whitespace=True
    )


class OptionSchema(_RequestModel):
    name: str = Field(min_length=1)
    code: str | None = None
    short_name: str | None = Field(default=None, alias="shortName")
    id: str | None = None
    description: str | None = None

    def to_template(self) -> OptionTemplate:
        return OptionTemplate(
            name=self.name,
            code=self.code,
            short_name=self.short_name,
            candidate_id=self.id,
            description=self.description,
        )


class GroupingSchema(_RequestModel):
    name: str = Field(min_length=1)
    options: list[OptionSchema] = Field(min_length=1)
    code: str | None = None
    short_name: str | None = Field(default=None, alias="shortName")
    id: str | None = None
    description: str | None = None

    def to_template(self) -> GroupingTemplate:
        return GroupingTemplate(
            name=self.name,
            options=tuple(option.to_template() for option in self.options),
            code=self.code,
            short_name=self.short_name,
            candidate_id=self.id,
            description=self.description,
        )


class CombinationSchema(_RequestModel):
    name: str = Field(min_length=1)
    groupings: list[GroupingSchema] = Field(min_length=1)
    code: str | None = None
    id: str | None = None

    def to_template(self) -> CombinationTemplate:
        return CombinationTemplate(
            name=self.name,
            groupings=tuple(grouping.to_template() for grouping in self.groupings),
            code=self.code,
            candidate_id=self.id,
        )


class ItemSchema(_RequestModel):
    name: str = Field(min_length=1)
    code: str | None = None
    short_name: str | None = Field(default=None, alias="shortName")
    value_type: str = Field(default="NUMBER", alias="valueType")
    aggregation_type: str = Field(default="SUM", alias="aggregationType")
    description: str | None = None
    id: str | None = None
    combination: CombinationSchema | None = None
    zero_is_significant: bool = Field(default=False, alias="zeroIsSignificant")

    def to_template(self) -> ItemTemplate:
        return ItemTemplate(
            name=self.name,
            code=self.code,
            short_name=self.short_name,
            value_type=self.value_type,
            aggregation_type=self.aggregation_type,
            description=self.description,
            candidate_id=self.id,
            combination=self.combination.to_template() if self.combination else None,
            zero_is_significant=self.zero_is_significant,
        )


class VariantSchema(_RequestModel):
    key: str = Field(min_length=1)
    label: str = Field(min_length=1)
    description: str | None = None


class ContextSchema(_RequestModel):
    name: str = Field(min_length=1)
    code: str | None = None
    description: str | None = None


class SharingSchema(_RequestModel):
    public: str = DEFAULT_PUBLIC_ACCESS
    external: bool = False


class RequestSchema(_RequestModel):
    context: ContextSchema
    org_units: list[str] = Field(alias="orgUnits")
    period_type: str = Field(default=DEFAULT_PERIOD_TYPE, alias="periodType")
    sharing: SharingSchema = Field(default_factory=SharingSchema)
    variants: list[VariantSchema] | None = None
    shared_items: list[ItemSchema] = Field(default_factory=list, alias="sharedItems")
    items: dict[str, list[ItemSchema]] = Field(default_factory=dict)

    def to_request(self) -> ProvisioningRequest:
        variants = (
            tuple(
                Variant(key=variant.key, label=variant.label, description=variant.description)
                for variant in self.variants
            )
            if self.variants
            else DEFAULT_VARIANTS
        )
        known_keys = {variant.key for variant in variants}
        unknown = sorted(set(self.items) - known_keys)
        if unknown:
            raise RequestError(f"Items given for unknown variant(s): {', '.join(unknown)}")
        return ProvisioningRequest(
            context_name=self.context.name,
            context_code=self.context.code or self.context.name,
            description=self.context.description,
            org_unit_ids=tuple(self.org_units),
            period_type=self.period_type,
            public_access=self.sharing.public,
            external_access=self.sharing.external,
            variants=variants,
            shared_items=tuple(item.to_template() for item in self.shared_items),
            items={
                key: tuple(item.to_template() for item in items)
                for key, items in self.items.items()
            },
        )


def parse_request(payload: object) -> ProvisioningRequest:
    try:
        schema = RequestSchema.model_validate(payload)
    except ValidationError as exc:
        raise RequestError(f"Invalid provisioning request: {exc}") from exc
    try:
        return schema.to_request()
    except ValueError as exc:
        if isinstance(exc, RequestError):
            raise
        raise RequestError(str(exc)) from exc


def load_request(path: str | PathLike[str]) -> ProvisioningRequest:
    file_path = Path(path)
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RequestError(f"Cannot read request file {file_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise RequestError(f"Request file {file_path} is not valid JSON: {exc}") from exc
    return parse_request(payload)
