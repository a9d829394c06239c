from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from metaprov.adapters.request import RequestError, load_request, parse_request
from metaprov.domain.templates import DEFAULT_VARIANTS

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def payload() -> dict[str, object]:
    sex = {
        "name": "Sex",
        "code": "SEX",
        "groupings": [
            {
                "name": "Sex",
                "options": [
                    {"name": "Male", "code": "MALE", "id": "FbLZS3ueWbQ"},
                    {"name": "Female", "code": "FEMALE"},
                ],
            }
        ],
    }
    return {
        "context": {"name": "ANC Assessment", "code": "ANC", "description": "Antenatal care"},
        "orgUnits": ["ImspTQPwCqd"],
        "sharing": {"public": "r-------"},
        "sharedItems": [{"name": "Facilities assessed"}],
        "items": {
            "register": [
                {
                    "name": "ANC 1st visit",
                    "code": "ANC1",
                    "valueType": "INTEGER",
                    "combination": sex,
                }
            ],
        },
    }


def test_parse_request_builds_templates(payload: dict[str, object]) -> None:
    request = parse_request(payload)

    assert request.context_code == "ANC"
    assert request.description == "Antenatal care"
    assert request.variants == DEFAULT_VARIANTS
    assert request.public_access == "r-------"
    assert request.period_type == "Monthly"
    register = request.items_for(DEFAULT_VARIANTS[0])
    assert [item.name for item in register] == ["Facilities assessed", "ANC 1st visit"]
    combination = register[1].combination
    assert combination is not None
    assert combination.groupings[0].options[0].candidate_id == "FbLZS3ueWbQ"
    assert register[1].value_type == "INTEGER"


def test_custom_variants_replace_the_defaults(payload: dict[str, object]) -> None:
    payload["variants"] = [{"key": "register", "label": "Register"}]

    request = parse_request(payload)

    assert [variant.key for variant in request.variants] == ["register"]


def test_items_for_unknown_variants_are_rejected(payload: dict[str, object]) -> None:
    payload["variants"] = [{"key": "summary", "label": "Summary"}]

    with pytest.raises(RequestError, match="unknown variant"):
        parse_request(payload)


def test_duplicate_variant_keys_are_rejected(payload: dict[str, object]) -> None:
    payload["items"] = {}
    payload["variants"] = [
        {"key": "register", "label": "Register"},
        {"key": "register", "label": "Again"},
    ]

    with pytest.raises(RequestError, match="unique"):
        parse_request(payload)


@pytest.mark.parametrize(
    "broken",
    [
        {"orgUnits": ["ImspTQPwCqd"]},
        {"context": {"name": ""}, "orgUnits": []},
        {"context": {"name": "ANC"}, "orgUnits": [], "unexpected": True},
    ],
)
def test_schema_violations_are_request_errors(broken: dict[str, object]) -> None:
    with pytest.raises(RequestError, match="Invalid provisioning request"):
        parse_request(broken)


def test_blank_item_names_are_request_errors(payload: dict[str, object]) -> None:
    payload["sharedItems"] = [{"name": "   "}]

    with pytest.raises(RequestError, match="Invalid provisioning request"):
        parse_request(payload)


def test_names_are_stripped(payload: dict[str, object]) -> None:
    payload["sharedItems"] = [{"name": "  Facilities assessed "}]

    request = parse_request(payload)

    assert request.shared_items[0].name == "Facilities assessed"


def test_load_request_reads_json_files(tmp_path: Path, payload: dict[str, object]) -> None:
    path = tmp_path / "request.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert load_request(path).context_name == "ANC Assessment"


def test_load_request_reports_unreadable_files(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(RequestError, match="not valid JSON"):
        load_request(broken)
    with pytest.raises(RequestError, match="Cannot read"):
        load_request(tmp_path / "missing.json")
