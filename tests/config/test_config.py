from __future__ import annotations

import base64
import logging

import pytest

from metaprov.config import (
    ConfigurationError,
    MissingConfigurationError,
    ProvisioningConfig,
    api_root,
    configure_logging,
    env_int,
    get_dhis2_config,
    get_provisioning_config,
    require_env_vars,
)


def test_require_env_vars_reports_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DHIS2_BASE_URL", "   ")

    with pytest.raises(MissingConfigurationError) as excinfo:
        require_env_vars(["DHIS2_BASE_URL", "DHIS2_TOKEN"])

    assert str(excinfo.value) == "Missing configuration for: DHIS2_BASE_URL, DHIS2_TOKEN"


def test_api_root_normalises_trailing_slashes() -> None:
    assert api_root(" https://play.dhis2.org/40/ ") == "https://play.dhis2.org/40/api/"


def test_token_authentication_is_preferred(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DHIS2_BASE_URL", "https://play.dhis2.org/40")
    monkeypatch.setenv("DHIS2_TOKEN", "d2pat_abc")
    monkeypatch.setenv("DHIS2_USERNAME", "admin")
    monkeypatch.setenv("DHIS2_PASSWORD", "district")

    config = get_dhis2_config()

    assert config.base_url == "https://play.dhis2.org/40"
    assert config.resilience.base_url == "https://play.dhis2.org/40/api/"
    assert config.resilience.default_headers is not None
    assert config.resilience.default_headers["Authorization"] == "ApiToken d2pat_abc"
    assert config.resilience.ratelimit is not None
    assert config.resilience.ratelimit.max_calls == 10
    assert config.resilience.retry.total == 0


def test_basic_authentication(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DHIS2_BASE_URL", "https://play.dhis2.org/40")
    monkeypatch.setenv("DHIS2_USERNAME", "admin")
    monkeypatch.setenv("DHIS2_PASSWORD", "district")
    monkeypatch.setenv("METAPROV_RATE_LIMIT", "0")

    config = get_dhis2_config()

    expected = base64.b64encode(b"admin:district").decode("ascii")
    assert config.resilience.default_headers is not None
    assert config.resilience.default_headers["Authorization"] == f"Basic {expected}"
    assert config.resilience.ratelimit is None


def test_missing_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DHIS2_BASE_URL", "https://play.dhis2.org/40")
    monkeypatch.setenv("DHIS2_USERNAME", "admin")

    with pytest.raises(MissingConfigurationError, match="DHIS2_TOKEN"):
        get_dhis2_config()


def test_provisioning_defaults() -> None:
    config = get_provisioning_config()

    assert config == ProvisioningConfig()
    assert config.namespace == "dqa360"
    assert config.default_combination_id == "bjDvmb4bfuf"


def test_provisioning_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METAPROV_NAMESPACE", "anc")
    monkeypatch.setenv("METAPROV_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("METAPROV_BACKOFF_BASE_SECONDS", "0.5")
    monkeypatch.setenv(
        "METAPROV_UNREACHABLE_IDS", "combination=oldCombo001, oldCombo002; option=;"
    )

    config = get_provisioning_config()

    assert config.namespace == "anc"
    assert config.max_attempts == 5
    assert config.backoff_base_seconds == 0.5
    assert config.known_unreachable == {
        "combination": ("oldCombo001", "oldCombo002"),
        "option": (),
    }


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("METAPROV_MAX_ATTEMPTS", "three", "must be an integer"),
        ("METAPROV_MAX_ATTEMPTS", "0", "at least 1"),
        ("METAPROV_BACKOFF_BASE_SECONDS", "fast", "must be a number"),
        ("METAPROV_UNREACHABLE_IDS", "combination", "Malformed"),
    ],
)
def test_invalid_provisioning_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError, match=message):
        get_provisioning_config()


def test_env_int_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("METAPROV_CONFLICT_RETRIES", raising=False)

    assert env_int("METAPROV_CONFLICT_RETRIES", 1) == 1


def test_configure_logging_quiets_http_clients() -> None:
    configure_logging(level=logging.DEBUG, force=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING
