# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Callable
from logging import getLogger
from os import environ
from typing import TypeVar

T = TypeVar("T")

log = getLogger(__name__)


# Settings
DD_API_KEY_SETTING = "DD_API_KEY"
DD_TELEMETRY_SETTING = "DD_TELEMETRY"
LOG_LEVEL_SETTING = "LOG_LEVEL"
SUBSCRIPTION_ID_SETTING = "AZURE_SUBSCRIPTION_ID"
AZ_CLI_PATH_SETTING = "AZ_CLI_PATH"

DEFAULT_AZ_CLI = "az"
LOG_LEVELS = {"ERROR", "WARN", "WARNING", "INFO", "DEBUG"}


def parse_config_option(name: str, parse: Callable[[str], T | None], default: T) -> T:
    """Get a configuration option from the environment, parse it, or return a default"""
    try:
        value = environ.get(name)
        if value is None:
            return default
        result = parse(value)
        if result is None:
            log.error(f"Invalid value for configuration option {name}: {value}")
            return default
        return result
    except ValueError:
        log.error(f"Invalid value for configuration option {name}: {environ.get(name)}")
        return default


def is_truthy(setting_name: str) -> bool:
    return environ.get(setting_name, "").lower().strip() in {"t", "true", "1", "y", "yes"}


def parse_log_level(value: str) -> str | None:
    level = value.upper().strip()
    return level if level in LOG_LEVELS else None


def get_log_level() -> str:
    return parse_config_option(LOG_LEVEL_SETTING, parse_log_level, "INFO")
