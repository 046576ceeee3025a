# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Iterable, Mapping
from logging import getLogger
from os import environ
from typing import Any, Final

# 3p
from jsonschema import ValidationError, validate
from yaml import YAMLError, safe_load

# project
from config.env import SUBSCRIPTION_ID_SETTING
from tasks.common import DEFAULT_STATE_KEY, BootstrapSettings

log = getLogger(__name__)

REQUIRED_SETTINGS: Final = ("resource_group", "location", "storage_account", "container", "identity")

NON_EMPTY_STRING: dict[str, Any] = {"type": "string", "minLength": 1}

USER_CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        **{setting: NON_EMPTY_STRING for setting in REQUIRED_SETTINGS},
        "subscription": NON_EMPTY_STRING,
        "state_key": NON_EMPTY_STRING,
        "tags": {
            "type": "object",
            "propertyNames": {"minLength": 1, "maxLength": 512},
            "additionalProperties": {"type": "string", "maxLength": 256},
        },
    },
    "additionalProperties": False,
}

EXAMPLE_CONFIG = """\
# Settings for bootstrap_state_storage.py, any of these can be overridden on the command line
resource_group: "rg-tfstate"
location: "eastus2"
storage_account: "sttfstate12345"
container: "tfstate"
identity: "id-tfstate"
# subscription: "00000000-0000-0000-0000-000000000000"
# state_key: "terraform.tfstate"
tags:
  owner: "platform-team"
  purpose: "terraform-state"
"""


class InvalidConfigError(Exception):
    pass


def load_user_config(path: str) -> dict[str, Any]:
    """Read and validate a YAML settings file. An empty file is an empty config"""
    try:
        with open(path) as f:
            config = safe_load(f)
    except FileNotFoundError:
        raise InvalidConfigError(f"Configuration file '{path}' not found") from None
    except YAMLError as e:
        raise InvalidConfigError(f"Error parsing configuration file '{path}': {e}") from e

    if config is None:
        log.warning("Configuration file '%s' is empty", path)
        return {}

    try:
        validate(instance=config, schema=USER_CONFIG_SCHEMA)
    except ValidationError as e:
        location = ".".join(str(p) for p in e.absolute_path) or "<root>"
        raise InvalidConfigError(f"Invalid configuration file '{path}' at {location}: {e.message}") from e
    return config


def parse_tags(pairs: Iterable[str]) -> dict[str, str]:
    """Parse KEY=VALUE strings into a tag mapping, later keys win"""
    tags: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidConfigError(f"Invalid tag '{pair}', expected KEY=VALUE")
        tags[key] = value.strip()
    return tags


def build_settings(user_config: Mapping[str, Any], overrides: Mapping[str, Any]) -> BootstrapSettings:
    """Merge file settings with command line overrides, which win when set"""
    merged = {**user_config, **{k: v for k, v in overrides.items() if v is not None and k != "tags"}}
    tags = {**user_config.get("tags", {}), **(overrides.get("tags") or {})}

    if missing := [setting for setting in REQUIRED_SETTINGS if not merged.get(setting)]:
        raise InvalidConfigError(f"Missing required setting(s): {', '.join(missing)}")

    return BootstrapSettings(
        resource_group=merged["resource_group"],
        location=merged["location"],
        storage_account=merged["storage_account"],
        container=merged["container"],
        identity=merged["identity"],
        tags=tags,
        subscription=merged.get("subscription") or environ.get(SUBSCRIPTION_ID_SETTING) or None,
        state_key=merged.get("state_key") or DEFAULT_STATE_KEY,
    )
