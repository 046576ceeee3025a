# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Callable
from typing import NamedTuple

# project
from tasks.client.azure_cli import AzureAccount, AzureCli
from tasks.client.state_storage_client import StateStorageClient
from tasks.common import (
    STORAGE_BLOB_DATA_CONTRIBUTOR_ROLE,
    BootstrapError,
    BootstrapResult,
    BootstrapSettings,
    ProvisioningError,
    ProvisioningStep,
    get_resource_group_id,
    get_storage_account_id,
    log_errors,
    validate_names,
)
from tasks.task import Task

BOOTSTRAP_TASK_NAME = "state_storage_bootstrap"

CONFIRM_PROMPT = "Press Enter to continue, or Ctrl+C to cancel... "

Confirm = Callable[[str], bool]


def console_confirm(prompt: str) -> bool:
    """Block until the operator presses Enter. Returns False if they cancel or stdin is closed"""
    try:
        input(prompt)
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return True


class CreatedResource(NamedTuple):
    kind: str
    id: str


class StateStorageBootstrapTask(Task):
    """Creates the resource group, storage account, container, managed identity and role assignment
    that back a remote state store, in that order, stopping at the first failure.

    Nothing created before a failure is removed; the resources are listed in the log instead."""

    NAME = BOOTSTRAP_TASK_NAME

    def __init__(self, settings: BootstrapSettings, confirm: Confirm = console_confirm, cli: AzureCli | None = None):
        super().__init__()
        self.settings = settings
        self.confirm = confirm
        self.cli = cli or AzureCli()
        self.created: list[CreatedResource] = []

    async def run(self) -> BootstrapResult | None:
        try:
            account = self.preflight()
            if account is None:
                return None
            async with StateStorageClient(self.credential, account.subscription_id) as client:
                result = await self.provision(client, account)
        except BootstrapError as e:
            self.report_failure(e)
            return None
        self.succeeded = True
        self.log.info("Remote state storage is ready in resource group %s", result.resource_group_name)
        return result

    def preflight(self) -> AzureAccount | None:
        validate_names(self.settings)
        self.cli.check_installed()
        account = self.cli.show_account(self.settings.subscription)
        self.log.info(
            "Signed in as %s (domain %s) to subscription %s (%s)",
            account.user_name or "unknown user",
            account.domain,
            account.subscription_name,
            account.subscription_id,
        )
        self.log.info(
            "Will create resource group %s, storage account %s, container %s and managed identity %s in %s",
            self.settings.resource_group,
            self.settings.storage_account,
            self.settings.container,
            self.settings.identity,
            self.settings.location,
        )
        if not self.confirm(CONFIRM_PROMPT):
            self.log.info("Cancelled, nothing was created. Exiting.")
            return None
        return account

    async def provision(self, client: StateStorageClient, account: AzureAccount) -> BootstrapResult:
        settings = self.settings
        tags = settings.resource_tags

        resource_group = await client.create_resource_group(settings.resource_group, settings.location, tags)
        resource_group_id = resource_group.id or get_resource_group_id(account.subscription_id, settings.resource_group)
        self.created.append(CreatedResource("resource group", resource_group_id))

        storage_account = await client.create_storage_account(
            settings.resource_group, settings.storage_account, settings.location, tags
        )
        storage_account_id = storage_account.id or get_storage_account_id(
            account.subscription_id, settings.resource_group, settings.storage_account
        )
        self.created.append(CreatedResource("storage account", storage_account_id))

        container = await client.create_container(settings.resource_group, settings.storage_account, settings.container)
        self.created.append(CreatedResource("container", container.id or settings.container))

        identity = await client.create_identity(settings.resource_group, settings.identity, settings.location, tags)
        self.created.append(CreatedResource("managed identity", identity.id))
        if not identity.principal_id:
            raise ProvisioningError(
                f"Managed identity {settings.identity} was created without a principal id",
                ProvisioningStep.MANAGED_IDENTITY,
            )

        role_assignment = await client.assign_role(
            storage_account_id, identity.principal_id, STORAGE_BLOB_DATA_CONTRIBUTOR_ROLE
        )
        self.created.append(CreatedResource("role assignment", role_assignment.id))

        return BootstrapResult(
            identity_name=identity.name or settings.identity,
            identity_id=identity.id,
            resource_group_name=resource_group.name or settings.resource_group,
            resource_group_id=resource_group_id,
            storage_account_name=storage_account.name or settings.storage_account,
            storage_account_id=storage_account_id,
            container_name=container.name or settings.container,
            identity_client_id=identity.client_id or "",
            identity_principal_id=identity.principal_id,
            role_assignment_id=role_assignment.id or "",
            subscription_id=account.subscription_id,
            tenant_id=identity.tenant_id or account.tenant_id,
        )

    def report_failure(self, e: BootstrapError) -> None:
        step = f" while creating the {e.step.value.replace('_', ' ')}" if e.step else ""
        message = f"Bootstrap failed{step}"
        if isinstance(e, ProvisioningError):
            log_errors(self.log, message, e)
        else:
            self.log.error("%s: %s", message, e)
        if self.created:
            self.log.warning(
                "The following resources were created before the failure and have NOT been removed:\n%s",
                "\n".join(f"\t- {resource.kind}: {resource.id}" for resource in self.created),
            )
