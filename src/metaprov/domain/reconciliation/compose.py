"""Turn caller templates into a dependency tree of reconciliation targets.

The composer builds one collection root per variant. Templates that appear in more
than one place (a shared grouping, the default combination) map onto the same target
object, so ``levels`` can de-duplicate by identity and the resolver memo keeps a
shared object from being resolved twice.
"""

from __future__ import annotations

from dataclasses import replace
from functools import partial
from typing import TYPE_CHECKING, Any

from metaprov.domain.errors import PayloadValidationError, ScopeError, UnresolvedDependencyError
from metaprov.domain.model import DEPENDENCY_ORDER, ReconciliationTarget, ResourceType

from . import payloads
from .payloads import (
    MAX_CODE_LENGTH,
    MAX_NAME_LENGTH,
    MAX_SHORT_NAME_LENGTH,
    PERIOD_TYPES,
    append_suffix,
    fit,
    normalize_code,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Mapping

    from metaprov.domain.model import ResolvedObject
    from metaprov.domain.templates import (
        CombinationTemplate,
        GroupingTemplate,
        ItemTemplate,
        OptionTemplate,
        ProvisioningRequest,
        Variant,
    )

DEFAULT_COMBINATION_NAME = "default"


class ResolutionLedger:
    """Resolved objects of one variant, keyed by the target that produced them."""

    def __init__(self) -> None:
        self._resolved: dict[ReconciliationTarget, ResolvedObject] = {}

    def record(self, resolved: ResolvedObject) -> None:
        target = resolved.source_target
        if target in self._resolved:
            raise ValueError(f"{target.resource_type} {target.label!r} is already resolved")
        self._resolved[target] = resolved

    def replace(self, resolved: ResolvedObject) -> None:
        """Swap in a re-resolved object for a target recorded earlier."""

        target = resolved.source_target
        if target not in self._resolved:
            raise UnresolvedDependencyError(
                f"{target.resource_type} {target.label!r} has not been resolved yet"
            )
        self._resolved[target] = resolved

    def get(self, target: ReconciliationTarget) -> ResolvedObject | None:
        return self._resolved.get(target)

    def remote_id(self, target: ReconciliationTarget) -> str:
        resolved = self._resolved.get(target)
        if resolved is None:
            raise UnresolvedDependencyError(
                f"{target.resource_type} {target.label!r} has not been resolved yet"
            )
        return resolved.remote_id

    def of_type(self, resource_type: ResourceType) -> list[ResolvedObject]:
        return [
            resolved
            for resolved in self._resolved.values()
            if resolved.resource_type is resource_type
        ]

    def __contains__(self, target: object) -> bool:
        return target in self._resolved

    def __iter__(self) -> Iterator[ResolvedObject]:
        return iter(self._resolved.values())

    def __len__(self) -> int:
        return len(self._resolved)


class HierarchyComposer:
    def __init__(self, default_combination_id: str) -> None:
        self._default_combination = ReconciliationTarget(
            resource_type=ResourceType.COMBINATION,
            desired_name=DEFAULT_COMBINATION_NAME,
            candidate_id=default_combination_id,
            allow_create=False,
        )
        self._options: dict[OptionTemplate, ReconciliationTarget] = {}
        self._groupings: dict[GroupingTemplate, ReconciliationTarget] = {}
        self._combinations: dict[CombinationTemplate, ReconciliationTarget] = {}

    @property
    def default_combination(self) -> ReconciliationTarget:
        return self._default_combination

    # Composition ------------------------------------------------------

    def compose(self, variant: Variant, request: ProvisioningRequest) -> ReconciliationTarget:
        """Build the collection root for ``variant`` with its full dependency tree.

        Raises ``ScopeError`` for an empty organisational scope and
        ``PayloadValidationError`` for missing templates, both before any remote call.
        """

        org_unit_ids = _clean_ids(request.org_unit_ids)
        if not org_unit_ids:
            raise ScopeError(f"Collection for variant {variant.key!r} has no organisational units")
        if request.period_type not in PERIOD_TYPES:
            raise PayloadValidationError(
                f"Unknown period type {request.period_type!r}",
                problems=("periodType",),
            )

        templates = request.items_for(variant)
        if not templates:
            raise PayloadValidationError(
                f"Variant {variant.key!r} has no measurable item templates",
                problems=("items",),
            )
        shared = set(request.shared_items)
        items = tuple(
            self._item(template, variant, per_variant=template in shared)
            for template in templates
        )

        context_code = normalize_code(request.context_code or request.context_name, prefix="DQA")
        template: dict[str, Any] = {
            "periodType": request.period_type,
            "categoryCombo": {"id": self._default_combination.candidate_id},
            "organisationUnits": [{"id": org_unit_id} for org_unit_id in org_unit_ids],
            "timelyDays": 15,
            "openFuturePeriods": 0,
            "expiryDays": 0,
            "formType": "DEFAULT",
        }
        description = variant.description or request.description
        if description:
            template["description"] = f"{request.context_name} - {description}"

        return ReconciliationTarget(
            resource_type=ResourceType.COLLECTION,
            desired_name=fit(f"{request.context_name} - {variant.label}", MAX_NAME_LENGTH),
            desired_code=append_suffix(
                context_code, variant.key.upper(), separator="_", limit=MAX_CODE_LENGTH
            ),
            desired_short_name=append_suffix(
                request.context_name.strip(),
                variant.label,
                separator=" - ",
                limit=MAX_SHORT_NAME_LENGTH,
            ),
            payload_template=template,
            dependencies=items,
        )

    def _item(
        self, template: ItemTemplate, variant: Variant, *, per_variant: bool
    ) -> ReconciliationTarget:
        name = _required_name(template.name, "Measurable item")
        code = template.code
        short_name = template.short_name or name
        if per_variant:
            code = append_suffix(
                normalize_code(code or name, prefix="DE"),
                variant.key.upper(),
                separator="_",
                limit=MAX_CODE_LENGTH,
            )
            name = append_suffix(name, variant.label, separator=" - ", limit=MAX_NAME_LENGTH)
            short_name = append_suffix(
                short_name, variant.label, separator=" ", limit=MAX_SHORT_NAME_LENGTH
            )

        body: dict[str, Any] = {
            "valueType": template.value_type,
            "aggregationType": template.aggregation_type,
            "domainType": "AGGREGATE",
            "zeroIsSignificant": template.zero_is_significant,
        }
        if template.description:
            body["description"] = template.description

        combination = (
            self._combination(template.combination)
            if template.combination is not None
            else self._default_combination
        )
        return ReconciliationTarget(
            resource_type=ResourceType.MEASURABLE_ITEM,
            desired_name=fit(name, MAX_NAME_LENGTH),
            desired_code=fit(code, MAX_CODE_LENGTH) if code else None,
            desired_short_name=fit(short_name, MAX_SHORT_NAME_LENGTH),
            candidate_id=None if per_variant else template.candidate_id,
            payload_template=body,
            dependencies=(combination,),
        )

    def _combination(self, template: CombinationTemplate) -> ReconciliationTarget:
        if template in self._combinations:
            return self._combinations[template]
        if not template.groupings:
            raise PayloadValidationError(
                f"Combination {template.name!r} has no groupings", problems=("categories",)
            )
        name = _required_name(template.name, "Combination")
        target = ReconciliationTarget(
            resource_type=ResourceType.COMBINATION,
            desired_name=fit(name, MAX_NAME_LENGTH),
            desired_code=template.code,
            candidate_id=template.candidate_id,
            payload_template={"dataDimensionType": "DISAGGREGATION", "skipTotal": False},
            dependencies=tuple(self._grouping(grouping) for grouping in template.groupings),
        )
        self._combinations[template] = target
        return target

    def _grouping(self, template: GroupingTemplate) -> ReconciliationTarget:
        if template in self._groupings:
            return self._groupings[template]
        if not template.options:
            raise PayloadValidationError(
                f"Grouping {template.name!r} has no options", problems=("categoryOptions",)
            )
        name = _required_name(template.name, "Grouping")
        body: dict[str, Any] = {"dataDimensionType": "DISAGGREGATION", "dataDimension": True}
        if template.description:
            body["description"] = template.description
        target = ReconciliationTarget(
            resource_type=ResourceType.GROUPING,
            desired_name=fit(name, MAX_NAME_LENGTH),
            desired_code=template.code,
            desired_short_name=fit(template.short_name or name, MAX_SHORT_NAME_LENGTH),
            candidate_id=template.candidate_id,
            payload_template=body,
            dependencies=tuple(self._option(option) for option in template.options),
        )
        self._groupings[template] = target
        return target

    def _option(self, template: OptionTemplate) -> ReconciliationTarget:
        if template in self._options:
            return self._options[template]
        name = _required_name(template.name, "Option")
        body = {"description": template.description} if template.description else {}
        target = ReconciliationTarget(
            resource_type=ResourceType.OPTION,
            desired_name=fit(name, MAX_NAME_LENGTH),
            desired_code=template.code,
            desired_short_name=fit(template.short_name or name, MAX_SHORT_NAME_LENGTH),
            candidate_id=template.candidate_id,
            payload_template=body,
        )
        self._options[template] = target
        return target

    # Traversal and payloads -------------------------------------------

    @staticmethod
    def levels(root: ReconciliationTarget) -> dict[ResourceType, list[ReconciliationTarget]]:
        """Targets of the tree grouped per resource type, in dependency order."""

        grouped: dict[ResourceType, list[ReconciliationTarget]] = {
            resource_type: [] for resource_type in DEPENDENCY_ORDER
        }
        for target in root.walk():
            grouped[target.resource_type].append(target)
        return grouped

    @staticmethod
    def rescope(root: ReconciliationTarget, org_unit_ids: Iterable[str]) -> ReconciliationTarget:
        """Return ``root`` restricted to ``org_unit_ids``; an empty scope is an error."""

        ids = _clean_ids(org_unit_ids)
        if not ids:
            raise ScopeError(f"Collection {root.label!r} has no organisational units left")
        template = dict(root.payload_template)
        template["organisationUnits"] = [{"id": org_unit_id} for org_unit_id in ids]
        return replace(root, payload_template=template)

    @staticmethod
    def with_sharing(
        root: ReconciliationTarget, sharing: Mapping[str, Any]
    ) -> ReconciliationTarget:
        template = dict(root.payload_template)
        template["sharing"] = dict(sharing)
        return replace(root, payload_template=template)

    @staticmethod
    def scope_of(root: ReconciliationTarget) -> tuple[str, ...]:
        units = root.payload_template.get("organisationUnits", ())
        return tuple(unit["id"] for unit in units)

    def build_payload(
        self,
        target: ReconciliationTarget,
        ledger: ResolutionLedger,
        new_id: str,
    ) -> dict[str, Any]:
        """Creation payload for ``target`` with its dependencies' remote ids embedded.

        Every dependency must already be in ``ledger``; resolved objects are only read.
        """

        missing = [dependency for dependency in target.dependencies if dependency not in ledger]
        if missing:
            labels = ", ".join(f"{dep.resource_type} {dep.label!r}" for dep in missing)
            raise UnresolvedDependencyError(
                f"Cannot build {target.resource_type} {target.label!r}: unresolved {labels}"
            )
        dependency_ids = list(
            dict.fromkeys(ledger.remote_id(dependency) for dependency in target.dependencies)
        )
        return payloads.build_payload(
            target.resource_type,
            uid=new_id,
            name=target.desired_name,
            code=target.desired_code,
            short_name=target.desired_short_name,
            template=target.payload_template,
            dependency_ids=dependency_ids,
        )

    def payload_factory(
        self, target: ReconciliationTarget, ledger: ResolutionLedger
    ) -> Callable[[str], dict[str, Any]]:
        return partial(self.build_payload, target, ledger)


def _clean_ids(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(value.strip() for value in values if value and value.strip()))


def _required_name(value: str, what: str) -> str:
    name = value.strip()
    if not name:
        raise PayloadValidationError(f"{what} name must not be blank", problems=("name",))
    return name
