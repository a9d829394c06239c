"""Identifier generation matching the DHIS2 UID grammar.

A UID is eleven characters long; the first is a letter and the remaining ten are
letters or digits. Uniqueness against the server is never checked here: the resolver
searches before it creates, which is what keeps provisioning idempotent.
"""

from __future__ import annotations

import re
import secrets
import string
from typing import Final

UID_LENGTH: Final[int] = 11
LETTERS: Final[str] = string.ascii_letters
ALPHANUMERIC: Final[str] = string.ascii_letters + string.digits

_UID_PATTERN: Final[re.Pattern[str]] = re.compile(r"[A-Za-z][A-Za-z0-9]{10}")


def generate_uid() -> str:
    """Return a fresh random UID."""

    head = secrets.choice(LETTERS)
    tail = "".join(secrets.choice(ALPHANUMERIC) for _ in range(UID_LENGTH - 1))
    return head + tail


def generate_uids(count: int) -> list[str]:
    if count < 0:
        raise ValueError("count must be non-negative")
    return [generate_uid() for _ in range(count)]


def is_valid_uid(value: object) -> bool:
    """Return whether ``value`` can be trusted as a UID lookup key."""

    return isinstance(value, str) and _UID_PATTERN.fullmatch(value) is not None
