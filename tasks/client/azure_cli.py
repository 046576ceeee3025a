# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
import json
import subprocess
from dataclasses import dataclass
from logging import getLogger
from os import environ
from shutil import which
from typing import Any

# project
from config.env import AZ_CLI_PATH_SETTING, DEFAULT_AZ_CLI
from tasks.common import BootstrapError

log = getLogger(__name__)

LOGIN_REQUIRED_ERRORS = ("az login", "No subscription found", "AADSTS700082")
SERVICE_PRINCIPAL_USER_TYPE = "servicePrincipal"


class MissingDependencyError(BootstrapError):
    pass


class NotAuthenticatedError(BootstrapError):
    pass


@dataclass(frozen=True)
class AzureAccount:
    user_name: str
    user_type: str
    subscription_id: str
    subscription_name: str
    tenant_id: str

    @property
    def domain(self) -> str:
        """The directory domain of the signed in user, or the tenant for service principals"""
        if self.user_type != SERVICE_PRINCIPAL_USER_TYPE and "@" in self.user_name:
            return self.user_name.rsplit("@", 1)[1]
        return self.tenant_id

    @classmethod
    def from_json(cls, account: dict[str, Any]) -> "AzureAccount":
        user = account.get("user") or {}
        return cls(
            user_name=user.get("name", ""),
            user_type=user.get("type", ""),
            subscription_id=account["id"],
            subscription_name=account.get("name", ""),
            tenant_id=account.get("tenantId", ""),
        )


class AzureCli:
    """Thin wrapper over the `az` executable, used only to check the operator's session"""

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or environ.get(AZ_CLI_PATH_SETTING, DEFAULT_AZ_CLI)

    def az(self, *args: str) -> str:
        """Runs an az command and returns stdout"""
        path = which(self.executable)
        if path is None:
            raise MissingDependencyError(
                f"Azure CLI ({self.executable}) is not installed or not in PATH. "
                "Install it from https://learn.microsoft.com/cli/azure/install-azure-cli"
            )
        log.debug("Running command: az %s", " ".join(args))
        try:
            result = subprocess.run([path, *args], check=True, text=True, capture_output=True)
        except FileNotFoundError as e:
            raise MissingDependencyError(f"Azure CLI ({self.executable}) could not be executed: {e}") from e
        return result.stdout

    def check_installed(self) -> str:
        """Return the installed CLI version, raising MissingDependencyError if there is none"""
        try:
            versions = json.loads(self.az("version", "--output", "json"))
        except subprocess.CalledProcessError as e:
            raise MissingDependencyError(f"Azure CLI is installed but not working:\n{e.stderr}") from e
        version = versions.get("azure-cli", "unknown")
        log.debug("Found Azure CLI %s", version)
        return version

    def show_account(self, subscription: str | None = None) -> AzureAccount:
        """Return the account of the current CLI session, raising NotAuthenticatedError if there is none"""
        args = ["account", "show", "--output", "json"]
        if subscription:
            args += ["--subscription", subscription]
        try:
            account = json.loads(self.az(*args))
        except subprocess.CalledProcessError as e:
            stderr = str(e.stderr)
            if subscription and f"Subscription '{subscription}' not found" in stderr:
                raise NotAuthenticatedError(
                    f"Subscription '{subscription}' not found for the signed in account"
                ) from None
            if any(error in stderr for error in LOGIN_REQUIRED_ERRORS):
                raise NotAuthenticatedError("Not signed in to Azure. Run 'az login' and try again.") from None
            raise NotAuthenticatedError(f"Unable to read the current Azure account:\n{stderr}") from None
        return AzureAccount.from_json(account)
