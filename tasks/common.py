# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from logging import Logger
from re import compile
from typing import Final

CONTROL_PLANE_METRIC_PREFIX: Final = "azure.tfstate_bootstrap."

STORAGE_ACCOUNT_SKU: Final = "Standard_LRS"
STORAGE_ACCOUNT_KIND: Final = "StorageV2"
STORAGE_ACCOUNT_TYPE: Final = "Microsoft.Storage/storageAccounts"
MINIMUM_TLS_VERSION: Final = "TLS1_2"

STORAGE_BLOB_DATA_CONTRIBUTOR_ROLE: Final = "Storage Blob Data Contributor"
SERVICE_PRINCIPAL_TYPE: Final = "ServicePrincipal"

DEFAULT_STATE_KEY: Final = "terraform.tfstate"

STORAGE_ACCOUNT_NAME_PATTERN = compile(r"^[a-z0-9]{3,24}$")
CONTAINER_NAME_PATTERN = compile(r"^(?=.{3,63}$)[a-z0-9](?!.*--)[a-z0-9-]*[a-z0-9]$")
RESOURCE_GROUP_NAME_PATTERN = compile(r"^[-\w.()]{0,89}[-\w()]$")
IDENTITY_NAME_PATTERN = compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]{2,127}$")

Tags = dict[str, str]


class ProvisioningStep(Enum):
    RESOURCE_GROUP = "resource_group"
    STORAGE_ACCOUNT = "storage_account"
    STORAGE_CONTAINER = "storage_container"
    MANAGED_IDENTITY = "managed_identity"
    ROLE_ASSIGNMENT = "role_assignment"


class BootstrapError(Exception):
    """Base class for every error that ends a bootstrap run"""

    step: ProvisioningStep | None = None

    def __init__(self, message: str, step: ProvisioningStep | None = None) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step


class InvalidNameError(BootstrapError):
    pass


class NameConflictError(BootstrapError):
    pass


class ProvisioningError(BootstrapError):
    pass


class RoleAssignmentAuthorizationError(ProvisioningError):
    step = ProvisioningStep.ROLE_ASSIGNMENT


@dataclass(frozen=True)
class BootstrapSettings:
    resource_group: str
    location: str
    storage_account: str
    container: str
    identity: str
    tags: Mapping[str, str] | None = None
    subscription: str | None = None
    state_key: str = DEFAULT_STATE_KEY

    @property
    def resource_tags(self) -> Tags:
        """Tags applied to every taggable resource, empty if none were given"""
        return dict(self.tags or {})


@dataclass(frozen=True)
class BootstrapResult:
    identity_name: str
    identity_id: str
    resource_group_name: str
    resource_group_id: str
    storage_account_name: str
    storage_account_id: str
    container_name: str = ""
    identity_client_id: str = ""
    identity_principal_id: str = ""
    role_assignment_id: str = ""
    subscription_id: str = ""
    tenant_id: str = ""


def get_resource_group_id(subscription_id: str, resource_group: str) -> str:
    return f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"


def get_storage_account_id(subscription_id: str, resource_group: str, storage_account: str) -> str:
    return (
        get_resource_group_id(subscription_id, resource_group)
        + "/providers/Microsoft.Storage/storageAccounts/"
        + storage_account
    )


def name_errors(settings: BootstrapSettings) -> list[str]:
    """Return a description of every name that Azure would reject"""
    errors = []
    if not RESOURCE_GROUP_NAME_PATTERN.fullmatch(settings.resource_group):
        errors.append(
            f"Resource group name '{settings.resource_group}' must be 1-90 letters, digits, "
            "'-', '_', '.', '(' or ')' and must not end with '.'"
        )
    if not STORAGE_ACCOUNT_NAME_PATTERN.fullmatch(settings.storage_account):
        errors.append(
            f"Storage account name '{settings.storage_account}' must be 3-24 lowercase letters and digits"
        )
    if not CONTAINER_NAME_PATTERN.fullmatch(settings.container):
        errors.append(
            f"Container name '{settings.container}' must be 3-63 lowercase letters, digits and single hyphens, "
            "starting and ending with a letter or digit"
        )
    if not IDENTITY_NAME_PATTERN.fullmatch(settings.identity):
        errors.append(
            f"Identity name '{settings.identity}' must be 3-128 letters, digits, '-' or '_', "
            "starting with a letter or digit"
        )
    return errors


def validate_names(settings: BootstrapSettings) -> None:
    if errors := name_errors(settings):
        raise InvalidNameError("; ".join(errors))


def log_errors(
    log: Logger,
    message: str,
    *maybe_errors: object | Exception,
    reraise: bool = False,
    extra: Mapping[str, str] | None = None,
) -> list[Exception]:
    """Log and return any errors in `maybe_errors`.
    If reraise is True, the first error will be raised"""
    errors = [e for e in maybe_errors if isinstance(e, Exception)]
    if errors:
        log.exception("%s: %s", message, errors, extra=extra)
        if reraise:
            raise errors[0]

    return errors
