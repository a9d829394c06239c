from __future__ import annotations

import pytest

from metaprov.domain.identifiers import UID_LENGTH, generate_uid, generate_uids, is_valid_uid


def test_generate_uid_matches_uid_grammar() -> None:
    for _ in range(200):
        uid = generate_uid()

        assert len(uid) == UID_LENGTH
        assert uid[0].isalpha()
        assert uid.isalnum()
        assert is_valid_uid(uid)


def test_generate_uids_are_distinct_within_a_run() -> None:
    uids = generate_uids(500)

    assert len(set(uids)) == 500


def test_generate_uids_rejects_negative_count() -> None:
    with pytest.raises(ValueError, match="non-negative"):
        generate_uids(-1)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("bjDvmb4bfuf", True),
        ("ImspTQPwCqd", True),
        ("1mspTQPwCqd", False),
        ("ImspTQPwCq", False),
        ("ImspTQPwCqdX", False),
        ("Imsp-QPwCqd", False),
        ("", False),
        (None, False),
        (12345678901, False),
    ],
)
def test_is_valid_uid(value: object, expected: bool) -> None:
    assert is_valid_uid(value) is expected
