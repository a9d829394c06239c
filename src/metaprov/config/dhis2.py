"""DHIS2 connection configuration values."""

from __future__ import annotations

import base64
from dataclasses import dataclass

from .env import env_float, optional_env_var, require_env_vars
from .errors import MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DHIS2_TIMEOUT_SECONDS = 30.0
DEFAULT_RATE_LIMIT_PER_SECOND = 10.0

# RetryController already retries dropped connections and 5xx answers, so the
# transport adds no retries of its own and one call costs at most max_attempts requests.
DHIS2_RETRY_POLICY = RetryPolicy(total=0)


@dataclass(frozen=True, slots=True)
class DHIS2Config:
    """Holds the API root and authentication for the target DHIS2 instance."""

    base_url: str
    resilience: ResilienceConfig


def api_root(base_url: str) -> str:
    return f"{base_url.strip().rstrip('/')}/api/"


def _authorization_header() -> str:
    token = optional_env_var("DHIS2_TOKEN")
    if token is not None:
        return f"ApiToken {token}"
    username = optional_env_var("DHIS2_USERNAME")
    password = optional_env_var("DHIS2_PASSWORD")
    if username is None or password is None:
        raise MissingConfigurationError(
            "Missing configuration for: DHIS2_TOKEN (or DHIS2_USERNAME and DHIS2_PASSWORD)"
        )
    credentials = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
    return f"Basic {credentials}"


def get_dhis2_config(*, resilience: ResilienceConfig | None = None) -> DHIS2Config:
    values = require_env_vars(("DHIS2_BASE_URL",))
    base_url = values["DHIS2_BASE_URL"].strip()
    if resilience is not None:
        return DHIS2Config(base_url=base_url, resilience=resilience)

    rate = env_float("METAPROV_RATE_LIMIT", DEFAULT_RATE_LIMIT_PER_SECOND)
    return DHIS2Config(
        base_url=base_url,
        resilience=ResilienceConfig(
            name="dhis2",
            base_url=api_root(base_url),
            timeout_seconds=DHIS2_TIMEOUT_SECONDS,
            retry=DHIS2_RETRY_POLICY,
            ratelimit=RateLimit(max_calls=int(rate), per_seconds=1.0) if rate >= 1 else None,
            default_headers={
                "Authorization": _authorization_header(),
                "Accept": "application/json",
            },
        ),
    )
