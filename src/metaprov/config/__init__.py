"""Application configuration helpers."""

from __future__ import annotations

from .dhis2 import DHIS2Config, api_root, get_dhis2_config
from .env import env_float, env_int, optional_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .provisioning import ProvisioningConfig, get_provisioning_config

__all__ = [
    "ConfigurationError",
    "DHIS2Config",
    "MissingConfigurationError",
    "ProvisioningConfig",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "api_root",
    "configure_logging",
    "env_float",
    "env_int",
    "get_dhis2_config",
    "get_provisioning_config",
    "optional_env_var",
    "require_env_vars",
]
