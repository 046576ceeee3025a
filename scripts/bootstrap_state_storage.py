#!/usr/bin/env python
# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# usage: bootstrap_state_storage.py [-h] [-c CONFIG] [-g RESOURCE_GROUP] [-l LOCATION] [--storage-account NAME]
#                                   [--container NAME] [--identity NAME] [-t KEY=VALUE] [-s SUBSCRIPTION]
#                                   [--state-key KEY] [--backend-config PATH] [-y] [-v] [--generate-config PATH]
#
# Create the Azure resources that hold Terraform remote state: a resource group, a storage account with a private
# container, and a user-assigned managed identity allowed to read and write blobs in that account.
#
# Requires the Azure CLI, signed in with `az login`. Nothing is rolled back if a step fails.

# stdlib
import argparse
from asyncio import run
from dataclasses import asdict
from json import dumps
from logging import DEBUG, basicConfig, getLogger

# project
from config.env import get_log_level
from config.user_config import EXAMPLE_CONFIG, InvalidConfigError, build_settings, load_user_config, parse_tags
from tasks.bootstrap_task import StateStorageBootstrapTask, console_confirm
from tasks.common import BootstrapResult, BootstrapSettings

log = getLogger("tfstate-bootstrap")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create an Azure storage account, container and managed identity for Terraform remote state"
    )
    parser.add_argument("-c", "--config", help="YAML file with any of the settings below. Flags override the file")
    parser.add_argument("-g", "--resource-group", help="Name of the resource group to create")
    parser.add_argument("-l", "--location", help="Azure region for every resource, e.g. eastus2")
    parser.add_argument("--storage-account", metavar="NAME", help="Globally unique storage account name")
    parser.add_argument("--container", metavar="NAME", help="Blob container that will hold the state file")
    parser.add_argument("--identity", metavar="NAME", help="Name of the user-assigned managed identity")
    parser.add_argument(
        "-t",
        "--tag",
        dest="tags",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Tag applied to the resource group, storage account and identity. Can be repeated",
    )
    parser.add_argument(
        "-s", "--subscription", help="Subscription name or ID. Defaults to the Azure CLI's current subscription"
    )
    parser.add_argument("--state-key", help="Blob name of the state file in the backend config")
    parser.add_argument("--backend-config", metavar="PATH", help="Write a Terraform backend.hcl here on success")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--generate-config", metavar="PATH", help="Write an example configuration file and exit")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> BootstrapSettings:
    user_config = load_user_config(args.config) if args.config else {}
    return build_settings(
        user_config,
        {
            "resource_group": args.resource_group,
            "location": args.location,
            "storage_account": args.storage_account,
            "container": args.container,
            "identity": args.identity,
            "subscription": args.subscription,
            "state_key": args.state_key,
            "tags": parse_tags(args.tags),
        },
    )


def hcl_string(value: str) -> str:
    """Quote a value as an HCL string literal"""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
    return f'"{escaped}"'


def backend_config(result: BootstrapResult, state_key: str) -> str:
    return f"""resource_group_name  = {hcl_string(result.resource_group_name)}
storage_account_name = {hcl_string(result.storage_account_name)}
container_name       = {hcl_string(result.container_name)}
key                  = {hcl_string(state_key)}
subscription_id      = {hcl_string(result.subscription_id)}
tenant_id            = {hcl_string(result.tenant_id)}
use_azuread_auth     = true
"""


def write_file(path: str, content: str) -> None:
    with open(path, "w") as f:
        f.write(content)


async def bootstrap(settings: BootstrapSettings, skip_prompts: bool = False) -> BootstrapResult | None:
    confirm = (lambda _: True) if skip_prompts else console_confirm
    async with StateStorageBootstrapTask(settings, confirm=confirm) as task:
        return await task.run()


def main(argv: list[str] | None = None) -> BootstrapResult:
    args = parse_args(argv)
    if args.verbose:
        getLogger().setLevel(DEBUG)

    if args.generate_config:
        write_file(args.generate_config, EXAMPLE_CONFIG)
        log.info("Wrote example configuration to %s", args.generate_config)
        raise SystemExit(0)

    try:
        settings = resolve_settings(args)
    except InvalidConfigError as e:
        log.error(str(e))
        raise SystemExit(2) from None

    if args.yes:
        log.warning("Skipping the confirmation prompt. Resources will be created without user confirmation")

    result = run(bootstrap(settings, skip_prompts=args.yes))
    if result is None:
        raise SystemExit(1)

    print(dumps(asdict(result), indent=2))
    if args.backend_config:
        write_file(args.backend_config, backend_config(result, settings.state_key))
        log.info("Wrote Terraform backend config to %s", args.backend_config)
    return result


def cli() -> None:
    basicConfig(level=get_log_level(), format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    main()


if __name__ == "__main__":
    cli()
