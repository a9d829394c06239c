"""Defaults for the provisioning engine."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_float, env_int, optional_env_var
from .errors import ConfigurationError

DEFAULT_NAMESPACE = "dqa360"
DEFAULT_MAPPING_KEY = "idMappings"
# Well-known id of the system "default" category combo on DHIS2 instances.
DEFAULT_COMBINATION_ID = "bjDvmb4bfuf"
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_CONFLICT_RETRIES = 1


@dataclass(frozen=True, slots=True)
class ProvisioningConfig:
    namespace: str = DEFAULT_NAMESPACE
    mapping_key: str = DEFAULT_MAPPING_KEY
    default_combination_id: str = DEFAULT_COMBINATION_ID
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    conflict_retries: int = DEFAULT_CONFLICT_RETRIES
    # resource type value -> foreign ids known to be unreachable on the target instance
    known_unreachable: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.backoff_base_seconds < 0:
            raise ConfigurationError("backoff_base_seconds must be non-negative")
        if self.conflict_retries < 0:
            raise ConfigurationError("conflict_retries must be non-negative")


def _parse_unreachable(raw: str | None) -> dict[str, tuple[str, ...]]:
    """Parse ``option=id1,id2;combination=id3`` into a mapping."""

    if raw is None:
        return {}
    parsed: dict[str, tuple[str, ...]] = {}
    for chunk in raw.split(";"):
        if not chunk.strip():
            continue
        resource_type, sep, ids = chunk.partition("=")
        if not sep:
            raise ConfigurationError(f"Malformed METAPROV_UNREACHABLE_IDS entry: {chunk!r}")
        parsed[resource_type.strip()] = tuple(
            value.strip() for value in ids.split(",") if value.strip()
        )
    return parsed


def get_provisioning_config() -> ProvisioningConfig:
    return ProvisioningConfig(
        namespace=optional_env_var("METAPROV_NAMESPACE") or DEFAULT_NAMESPACE,
        mapping_key=optional_env_var("METAPROV_MAPPING_KEY") or DEFAULT_MAPPING_KEY,
        default_combination_id=optional_env_var("METAPROV_DEFAULT_COMBINATION_ID")
        or DEFAULT_COMBINATION_ID,
        backoff_base_seconds=env_float(
            "METAPROV_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE_SECONDS
        ),
        max_attempts=env_int("METAPROV_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        conflict_retries=env_int("METAPROV_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES),
        known_unreachable=_parse_unreachable(optional_env_var("METAPROV_UNREACHABLE_IDS")),
    )
