# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from asyncio import gather
from collections.abc import Iterator
from contextlib import AbstractAsyncContextManager, contextmanager
from logging import getLogger
from types import TracebackType
from typing import Self
from uuid import uuid4

# 3p
from azure.core.exceptions import AzureError, HttpResponseError
from azure.identity.aio import AzureCliCredential
from azure.mgmt.authorization.aio import AuthorizationManagementClient
from azure.mgmt.authorization.models import RoleAssignment, RoleAssignmentCreateParameters
from azure.mgmt.msi.aio import ManagedServiceIdentityClient
from azure.mgmt.msi.models import Identity
from azure.mgmt.resource.resources.aio import ResourceManagementClient
from azure.mgmt.resource.resources.models import ResourceGroup
from azure.mgmt.storage.aio import StorageManagementClient
from azure.mgmt.storage.models import (
    BlobContainer,
    PublicAccess,
    Sku,
    StorageAccount,
    StorageAccountCheckNameAvailabilityParameters,
    StorageAccountCreateParameters,
)

# project
from tasks.common import (
    MINIMUM_TLS_VERSION,
    SERVICE_PRINCIPAL_TYPE,
    STORAGE_ACCOUNT_KIND,
    STORAGE_ACCOUNT_SKU,
    STORAGE_ACCOUNT_TYPE,
    NameConflictError,
    ProvisioningError,
    ProvisioningStep,
    RoleAssignmentAuthorizationError,
    Tags,
)
from tasks.deploy_common import wait_for_resource

AUTHORIZATION_ERROR = "AuthorizationFailed"

log = getLogger(__name__)


def is_authorization_error(e: AzureError) -> bool:
    if not isinstance(e, HttpResponseError):
        return False
    code = e.error.code if e.error else None
    return e.status_code == 403 or code == AUTHORIZATION_ERROR


@contextmanager
def provider_errors(step: ProvisioningStep, action: str) -> Iterator[None]:
    """Translate Azure SDK errors raised inside the block into ProvisioningErrors for `step`"""
    try:
        yield
    except AzureError as e:
        if step is ProvisioningStep.ROLE_ASSIGNMENT and is_authorization_error(e):
            raise RoleAssignmentAuthorizationError(
                f"Insufficient permissions to {action.lower()}. Assigning roles requires Owner or "
                f"User Access Administrator on the target scope: {e.message}"
            ) from e
        raise ProvisioningError(f"{action}: {e.message}", step) from e


class StateStorageClient(AbstractAsyncContextManager["StateStorageClient"]):
    """Management-plane operations needed to stand up remote state storage in one subscription"""

    def __init__(self, credential: AzureCliCredential, subscription_id: str) -> None:
        self.subscription_id = subscription_id
        self.resource_client = ResourceManagementClient(credential, subscription_id)
        self.storage_client = StorageManagementClient(credential, subscription_id)
        self.msi_client = ManagedServiceIdentityClient(credential, subscription_id)
        self.authorization_client = AuthorizationManagementClient(credential, subscription_id)

    async def __aenter__(self) -> Self:
        await gather(
            self.resource_client.__aenter__(),
            self.storage_client.__aenter__(),
            self.msi_client.__aenter__(),
            self.authorization_client.__aenter__(),
        )
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: TracebackType | None
    ) -> None:
        await gather(
            self.resource_client.__aexit__(exc_type, exc_val, exc_tb),
            self.storage_client.__aexit__(exc_type, exc_val, exc_tb),
            self.msi_client.__aexit__(exc_type, exc_val, exc_tb),
            self.authorization_client.__aexit__(exc_type, exc_val, exc_tb),
        )

    async def create_resource_group(self, resource_group: str, location: str, tags: Tags) -> ResourceGroup:
        step = ProvisioningStep.RESOURCE_GROUP
        with provider_errors(step, f"Failed to create resource group {resource_group}"):
            if await self.resource_client.resource_groups.check_existence(resource_group):
                raise NameConflictError(
                    f"Resource group {resource_group} already exists. Choose a new name or delete the existing group.",
                    step,
                )
            log.info("Creating resource group %s in %s", resource_group, location)
            return await self.resource_client.resource_groups.create_or_update(
                resource_group, ResourceGroup(location=location, tags=tags)
            )

    async def check_storage_account_name(self, storage_account: str) -> None:
        """Storage account names are global, raise NameConflictError if someone already has this one"""
        step = ProvisioningStep.STORAGE_ACCOUNT
        with provider_errors(step, f"Failed to check availability of storage account name {storage_account}"):
            availability = await self.storage_client.storage_accounts.check_name_availability(
                StorageAccountCheckNameAvailabilityParameters(name=storage_account, type=STORAGE_ACCOUNT_TYPE)
            )
        if not availability.name_available:
            raise NameConflictError(
                f"Storage account name {storage_account} is not available "
                f"({availability.reason or 'unknown reason'}): {availability.message or ''}".rstrip(": "),
                step,
            )

    async def create_storage_account(
        self, resource_group: str, storage_account: str, location: str, tags: Tags
    ) -> StorageAccount:
        await self.check_storage_account_name(storage_account)
        step = ProvisioningStep.STORAGE_ACCOUNT
        with provider_errors(step, f"Failed to create storage account {storage_account}"):
            log.info("Creating storage account %s in %s", storage_account, location)
            poller = await self.storage_client.storage_accounts.begin_create(
                resource_group,
                storage_account,
                StorageAccountCreateParameters(
                    sku=Sku(name=STORAGE_ACCOUNT_SKU),
                    kind=STORAGE_ACCOUNT_KIND,
                    location=location,
                    tags=tags,
                    enable_https_traffic_only=True,
                    minimum_tls_version=MINIMUM_TLS_VERSION,
                    allow_blob_public_access=False,
                ),
            )
            return await wait_for_resource(
                poller, lambda: self.storage_client.storage_accounts.get_properties(resource_group, storage_account)
            )

    async def create_container(self, resource_group: str, storage_account: str, container: str) -> BlobContainer:
        with provider_errors(ProvisioningStep.STORAGE_CONTAINER, f"Failed to create container {container}"):
            log.info("Creating private container %s in storage account %s", container, storage_account)
            return await self.storage_client.blob_containers.create(
                resource_group,
                storage_account,
                container,
                BlobContainer(public_access=PublicAccess.NONE),
            )

    async def create_identity(self, resource_group: str, identity: str, location: str, tags: Tags) -> Identity:
        with provider_errors(ProvisioningStep.MANAGED_IDENTITY, f"Failed to create managed identity {identity}"):
            log.info("Creating user-assigned managed identity %s in %s", identity, location)
            return await self.msi_client.user_assigned_identities.create_or_update(
                resource_group, identity, Identity(location=location, tags=tags)
            )

    async def get_role_definition_id(self, scope: str, role_name: str) -> str:
        role_definitions = self.authorization_client.role_definitions.list(scope, filter=f"roleName eq '{role_name}'")
        async for role_definition in role_definitions:
            if role_definition.role_name == role_name:
                return role_definition.id
        raise ProvisioningError(f"Role definition '{role_name}' not found at {scope}", ProvisioningStep.ROLE_ASSIGNMENT)

    async def assign_role(self, scope: str, principal_id: str, role_name: str) -> RoleAssignment:
        with provider_errors(ProvisioningStep.ROLE_ASSIGNMENT, f"Failed to assign role {role_name}"):
            role_definition_id = await self.get_role_definition_id(scope, role_name)
            log.info("Assigning role %s to principal %s on %s", role_name, principal_id, scope)
            return await self.authorization_client.role_assignments.create(
                scope,
                str(uuid4()),
                RoleAssignmentCreateParameters(
                    role_definition_id=role_definition_id,
                    principal_id=principal_id,
                    principal_type=SERVICE_PRINCIPAL_TYPE,
                ),
            )
