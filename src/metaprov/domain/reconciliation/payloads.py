"""Creation payloads for each resource type, plus their validation rules."""

from __future__ import annotations

import re
import secrets
import string
from typing import TYPE_CHECKING, Any, Final

from metaprov.domain.errors import PayloadValidationError
from metaprov.domain.model import ResourceType

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

MAX_NAME_LENGTH: Final[int] = 230
MAX_CODE_LENGTH: Final[int] = 50
MAX_SHORT_NAME_LENGTH: Final[int] = 50
SUFFIX_LENGTH: Final[int] = 5

PERIOD_TYPES: Final[frozenset[str]] = frozenset(
    {
        "Daily",
        "Weekly",
        "WeeklyWednesday",
        "WeeklyThursday",
        "WeeklySaturday",
        "WeeklySunday",
        "BiWeekly",
        "Monthly",
        "BiMonthly",
        "Quarterly",
        "SixMonthly",
        "SixMonthlyApril",
        "SixMonthlyNov",
        "Yearly",
        "FinancialApril",
        "FinancialJuly",
        "FinancialOct",
        "FinancialNov",
    }
)

VALUE_TYPES: Final[frozenset[str]] = frozenset(
    {
        "NUMBER",
        "INTEGER",
        "INTEGER_POSITIVE",
        "INTEGER_NEGATIVE",
        "INTEGER_ZERO_OR_POSITIVE",
        "PERCENTAGE",
        "UNIT_INTERVAL",
        "TEXT",
        "LONG_TEXT",
        "LETTER",
        "BOOLEAN",
        "TRUE_ONLY",
        "DATE",
        "DATETIME",
        "TIME",
    }
)

AGGREGATION_TYPES: Final[frozenset[str]] = frozenset(
    {
        "SUM",
        "AVERAGE",
        "AVERAGE_SUM_ORG_UNIT",
        "LAST",
        "LAST_AVERAGE_ORG_UNIT",
        "FIRST",
        "COUNT",
        "STDDEV",
        "VARIANCE",
        "MIN",
        "MAX",
        "NONE",
        "DEFAULT",
    }
)

# metadata read/write, data read/write, then four unused flags
_ACCESS_PATTERN: Final[re.Pattern[str]] = re.compile(r"[r-][w-][r-][w-]-{4}")
_CODE_UNSAFE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_]")
_SUFFIX_ALPHABET: Final[str] = string.ascii_uppercase + string.digits


def disambiguation_suffix() -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))


def fit(value: str, limit: int) -> str:
    return value.strip()[:limit]


def normalize_code(value: str | None, *, prefix: str = "CODE") -> str:
    """Upper-case ``value`` into a code made of letters, digits and underscores."""

    cleaned = _CODE_UNSAFE.sub("", "_".join(str(value or "").split())).upper()
    if not cleaned:
        cleaned = f"{prefix}_{disambiguation_suffix()}"
    return cleaned[:MAX_CODE_LENGTH]


def is_valid_access(value: object) -> bool:
    return isinstance(value, str) and _ACCESS_PATTERN.fullmatch(value) is not None


def append_suffix(value: str, suffix: str, *, separator: str, limit: int) -> str:
    tail = f"{separator}{suffix}"
    return value[: max(limit - len(tail), 0)] + tail


def disambiguate(payload: Mapping[str, Any], suffix: str) -> dict[str, Any]:
    """Return a copy of ``payload`` whose uniqueness keys carry ``suffix``."""

    updated = dict(payload)
    if updated.get("name"):
        updated["name"] = append_suffix(
            str(updated["name"]), suffix, separator="_", limit=MAX_NAME_LENGTH
        )
    if updated.get("code"):
        updated["code"] = append_suffix(
            str(updated["code"]), suffix, separator="_", limit=MAX_CODE_LENGTH
        )
    if updated.get("shortName"):
        updated["shortName"] = append_suffix(
            str(updated["shortName"]), suffix, separator=" ", limit=MAX_SHORT_NAME_LENGTH
        )
    return updated


def _refs(ids: Sequence[str]) -> list[dict[str, str]]:
    return [{"id": object_id} for object_id in ids]


def build_payload(
    resource_type: ResourceType,
    *,
    uid: str,
    name: str,
    code: str | None,
    short_name: str | None,
    template: Mapping[str, Any],
    dependency_ids: Sequence[str],
) -> dict[str, Any]:
    """Assemble the creation payload, embedding resolved dependency ids."""

    payload: dict[str, Any] = {"id": uid, "name": name}
    if code:
        payload["code"] = code
    if short_name:
        payload["shortName"] = short_name
    for key, value in template.items():
        payload.setdefault(key, value)

    if resource_type is ResourceType.GROUPING:
        payload.setdefault("dataDimensionType", "DISAGGREGATION")
        payload.setdefault("dataDimension", True)
        payload["categoryOptions"] = _refs(dependency_ids)
    elif resource_type is ResourceType.COMBINATION:
        payload.setdefault("dataDimensionType", "DISAGGREGATION")
        payload["categories"] = _refs(dependency_ids)
    elif resource_type is ResourceType.MEASURABLE_ITEM:
        if len(dependency_ids) != 1:
            raise PayloadValidationError(
                f"Measurable item {name!r} must reference exactly one combination",
                problems=("categoryCombo",),
            )
        payload.setdefault("domainType", "AGGREGATE")
        payload["categoryCombo"] = {"id": dependency_ids[0]}
    elif resource_type is ResourceType.COLLECTION:
        payload["dataSetElements"] = [
            {"dataElement": {"id": item_id}, "sortOrder": index}
            for index, item_id in enumerate(dependency_ids, start=1)
        ]

    validate_payload(resource_type, payload)
    return payload


def payload_problems(resource_type: ResourceType, payload: Mapping[str, Any]) -> list[str]:
    problems: list[str] = []
    name = payload.get("name")
    code = payload.get("code")
    short_name = payload.get("shortName")

    if not isinstance(name, str) or not name.strip():
        problems.append("name is required")
    elif len(name) > MAX_NAME_LENGTH:
        problems.append(f"name is longer than {MAX_NAME_LENGTH} characters")
    if code is not None and len(str(code)) > MAX_CODE_LENGTH:
        problems.append(f"code is longer than {MAX_CODE_LENGTH} characters")
    if short_name is not None and len(str(short_name)) > MAX_SHORT_NAME_LENGTH:
        problems.append(f"shortName is longer than {MAX_SHORT_NAME_LENGTH} characters")

    if resource_type is ResourceType.GROUPING and not payload.get("categoryOptions"):
        problems.append("grouping needs at least one option")
    if resource_type is ResourceType.COMBINATION and not payload.get("categories"):
        problems.append("combination needs at least one grouping")
    if resource_type is ResourceType.MEASURABLE_ITEM:
        if payload.get("valueType") not in VALUE_TYPES:
            problems.append(f"invalid valueType {payload.get('valueType')!r}")
        if payload.get("aggregationType") not in AGGREGATION_TYPES:
            problems.append(f"invalid aggregationType {payload.get('aggregationType')!r}")
    if resource_type is ResourceType.COLLECTION:
        problems.extend(_collection_problems(payload))
    return problems


def _collection_problems(payload: Mapping[str, Any]) -> list[str]:
    problems: list[str] = []
    if not code_present(payload):
        problems.append("collection code is required")
    if payload.get("periodType") not in PERIOD_TYPES:
        problems.append(f"invalid periodType {payload.get('periodType')!r}")
    if not payload.get("dataSetElements"):
        problems.append("collection needs at least one measurable item")
    if not payload.get("organisationUnits"):
        problems.append("collection needs at least one organisational unit")
    sharing = payload.get("sharing")
    if sharing is not None and not is_valid_access(sharing.get("public")):
        problems.append(f"invalid public access {sharing.get('public')!r}")
    return problems


def code_present(payload: Mapping[str, Any]) -> bool:
    code = payload.get("code")
    return isinstance(code, str) and bool(code.strip())


def validate_payload(resource_type: ResourceType, payload: Mapping[str, Any]) -> None:
    problems = payload_problems(resource_type, payload)
    if problems:
        label = payload.get("code") or payload.get("name") or "<unnamed>"
        raise PayloadValidationError(
            f"Invalid {resource_type} payload {label!r}: {'; '.join(problems)}",
            problems=tuple(problems),
        )
