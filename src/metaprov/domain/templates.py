"""Caller-supplied templates describing what a provisioning run should build."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

DEFAULT_PERIOD_TYPE: Final[str] = "Monthly"
DEFAULT_PUBLIC_ACCESS: Final[str] = "rw------"


@dataclass(frozen=True, slots=True)
class Variant:
    """One collection kind provisioned per run (register, summary, ...)."""

    key: str
    label: str
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.key.strip():
            raise ValueError("variant key must not be empty")


DEFAULT_VARIANTS: Final[tuple[Variant, ...]] = (
    Variant(
        "register",
        "Register",
        "Registering and tracking data quality assessment activities",
    ),
    Variant(
        "summary",
        "Summary",
        "Summarizing data quality assessment results and metrics",
    ),
    Variant(
        "reported",
        "Reported",
        "Reported data values and submission tracking",
    ),
    Variant(
        "corrected",
        "Corrected",
        "Data corrections and quality improvement actions",
    ),
)


@dataclass(frozen=True, slots=True)
class OptionTemplate:
    name: str
    code: str | None = None
    short_name: str | None = None
    candidate_id: str | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class GroupingTemplate:
    name: str
    options: tuple[OptionTemplate, ...]
    code: str | None = None
    short_name: str | None = None
    candidate_id: str | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class CombinationTemplate:
    name: str
    groupings: tuple[GroupingTemplate, ...]
    code: str | None = None
    candidate_id: str | None = None


@dataclass(frozen=True, slots=True)
class ItemTemplate:
    """A measurable item; without a combination it uses the instance default."""

    name: str
    code: str | None = None
    short_name: str | None = None
    value_type: str = "NUMBER"
    aggregation_type: str = "SUM"
    description: str | None = None
    candidate_id: str | None = None
    combination: CombinationTemplate | None = None
    zero_is_significant: bool = False


@dataclass(frozen=True, slots=True)
class ProvisioningRequest:
    """Everything needed to provision all variants of one assessment."""

    context_name: str
    context_code: str
    org_unit_ids: tuple[str, ...]
    items: dict[str, tuple[ItemTemplate, ...]] = field(default_factory=dict)
    shared_items: tuple[ItemTemplate, ...] = ()
    variants: tuple[Variant, ...] = DEFAULT_VARIANTS
    period_type: str = DEFAULT_PERIOD_TYPE
    public_access: str = DEFAULT_PUBLIC_ACCESS
    external_access: bool = False
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.context_name.strip():
            raise ValueError("context name must not be empty")
        keys = [variant.key for variant in self.variants]
        if len(set(keys)) != len(keys):
            raise ValueError("variant keys must be unique")

    def items_for(self, variant: Variant) -> tuple[ItemTemplate, ...]:
        """Shared items followed by the variant's own items."""

        return (*self.shared_items, *self.items.get(variant.key, ()))
