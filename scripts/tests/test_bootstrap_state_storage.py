# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from contextlib import redirect_stdout
from io import StringIO
from json import loads
from os.path import exists, join
from tempfile import TemporaryDirectory
from unittest import TestCase
from unittest.mock import patch

# project
from config.user_config import EXAMPLE_CONFIG
from scripts.bootstrap_state_storage import backend_config, hcl_string, main
from tasks.bootstrap_task import console_confirm
from tasks.common import BootstrapResult, BootstrapSettings
from tasks.tests.common import AsyncMockClient

SUB_ID = "decc348e-ca9e-4925-b351-ae56b0d9f811"
TENANT_ID = "72f988bf-86f1-41af-91ab-2d7cd011db47"

RESULT = BootstrapResult(
    identity_name="id-tfstate",
    identity_id=f"/subscriptions/{SUB_ID}/resourceGroups/rg-tfstate/providers/Microsoft.ManagedIdentity/userAssignedIdentities/id-tfstate",
    resource_group_name="rg-tfstate",
    resource_group_id=f"/subscriptions/{SUB_ID}/resourceGroups/rg-tfstate",
    storage_account_name="sttfstate0001",
    storage_account_id=f"/subscriptions/{SUB_ID}/resourceGroups/rg-tfstate/providers/Microsoft.Storage/storageAccounts/sttfstate0001",
    container_name="tfstate",
    subscription_id=SUB_ID,
    tenant_id=TENANT_ID,
)

ARGS = [
    "-g",
    "rg-tfstate",
    "-l",
    "eastus2",
    "--storage-account",
    "sttfstate0001",
    "--container",
    "tfstate",
    "--identity",
    "id-tfstate",
]


class TestMain(TestCase):
    def setUp(self) -> None:
        self.task = AsyncMockClient()
        self.task.run.return_value = RESULT
        task_patch = patch("scripts.bootstrap_state_storage.StateStorageBootstrapTask", return_value=self.task)
        env_patch = patch.dict("config.user_config.environ", {}, clear=True)
        self.task_class = task_patch.start()
        env_patch.start()
        self.addCleanup(task_patch.stop)
        self.addCleanup(env_patch.stop)
        self.tmp = TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def run_main(self, *args: str) -> tuple[BootstrapResult, str]:
        stdout = StringIO()
        with redirect_stdout(stdout):
            result = main([*ARGS, *args])
        return result, stdout.getvalue()

    def settings(self) -> BootstrapSettings:
        return self.task_class.call_args[0][0]

    def test_prints_result(self):
        result, output = self.run_main()

        self.assertEqual(result, RESULT)
        self.assertEqual(loads(output)["storage_account_id"], RESULT.storage_account_id)
        self.task.run.assert_awaited_once_with()
        self.task.__aexit__.assert_awaited_once()

    def test_settings_from_flags(self):
        self.run_main("-t", "owner=platform", "--tag", "env=prod", "-s", "Platform Production")

        settings = self.settings()
        self.assertEqual(settings.resource_group, "rg-tfstate")
        self.assertEqual(settings.location, "eastus2")
        self.assertEqual(settings.storage_account, "sttfstate0001")
        self.assertEqual(settings.container, "tfstate")
        self.assertEqual(settings.identity, "id-tfstate")
        self.assertEqual(settings.resource_tags, {"owner": "platform", "env": "prod"})
        self.assertEqual(settings.subscription, "Platform Production")

    def test_flags_override_config_file(self):
        config_path = join(self.tmp.name, "bootstrap.yaml")
        with open(config_path, "w") as f:
            f.write(EXAMPLE_CONFIG)

        self.run_main("-c", config_path, "-t", "owner=infra")

        settings = self.settings()
        self.assertEqual(settings.location, "eastus2")
        self.assertEqual(settings.storage_account, "sttfstate0001")
        self.assertEqual(settings.resource_tags, {"owner": "infra", "purpose": "terraform-state"})

    def test_prompts_by_default(self):
        self.run_main()

        self.assertIs(self.task_class.call_args[1]["confirm"], console_confirm)

    def test_yes_skips_prompt(self):
        self.run_main("--yes")

        confirm = self.task_class.call_args[1]["confirm"]
        self.assertIsNot(confirm, console_confirm)
        self.assertTrue(confirm("Continue?"))

    def test_failed_bootstrap_exits_with_error(self):
        self.task.run.return_value = None

        with self.assertRaises(SystemExit) as ctx:
            self.run_main()

        self.assertEqual(ctx.exception.code, 1)

    def test_invalid_tag_exits_before_bootstrap(self):
        with self.assertRaises(SystemExit) as ctx, self.assertLogs("tfstate-bootstrap", level="ERROR"):
            self.run_main("-t", "owner")

        self.assertEqual(ctx.exception.code, 2)
        self.task_class.assert_not_called()

    def test_missing_settings_exits_before_bootstrap(self):
        with self.assertRaises(SystemExit) as ctx, self.assertLogs("tfstate-bootstrap", level="ERROR") as logs:
            main(["-g", "rg-tfstate"])

        self.assertEqual(ctx.exception.code, 2)
        self.assertIn("location, storage_account, container, identity", logs.output[0])
        self.task_class.assert_not_called()

    def test_missing_config_file_exits_before_bootstrap(self):
        with self.assertRaises(SystemExit) as ctx, self.assertLogs("tfstate-bootstrap", level="ERROR"):
            self.run_main("-c", join(self.tmp.name, "missing.yaml"))

        self.assertEqual(ctx.exception.code, 2)
        self.task_class.assert_not_called()

    def test_writes_backend_config(self):
        path = join(self.tmp.name, "backend.hcl")

        self.run_main("--backend-config", path, "--state-key", "platform.tfstate")

        with open(path) as f:
            contents = f.read()
        self.assertIn('storage_account_name = "sttfstate0001"', contents)
        self.assertIn('key                  = "platform.tfstate"', contents)
        self.assertIn("use_azuread_auth     = true", contents)

    def test_no_backend_config_on_failure(self):
        self.task.run.return_value = None
        path = join(self.tmp.name, "backend.hcl")

        with self.assertRaises(SystemExit):
            self.run_main("--backend-config", path)

        self.assertFalse(exists(path))

    def test_generate_config(self):
        path = join(self.tmp.name, "example.yaml")

        with self.assertRaises(SystemExit) as ctx:
            main(["--generate-config", path])

        self.assertEqual(ctx.exception.code, 0)
        with open(path) as f:
            self.assertEqual(f.read(), EXAMPLE_CONFIG)
        self.task_class.assert_not_called()


class TestBackendConfig(TestCase):
    def test_backend_config(self):
        self.assertEqual(
            backend_config(RESULT, "terraform.tfstate"),
            f"""resource_group_name  = "rg-tfstate"
storage_account_name = "sttfstate0001"
container_name       = "tfstate"
key                  = "terraform.tfstate"
subscription_id      = "{SUB_ID}"
tenant_id            = "{TENANT_ID}"
use_azuread_auth     = true
""",
        )

    def test_state_key_is_escaped(self):
        contents = backend_config(RESULT, 'env\\"prod".tfstate')

        self.assertIn('key                  = "env\\\\\\"prod\\".tfstate"\n', contents)


class TestHclString(TestCase):
    def test_plain_value(self):
        self.assertEqual(hcl_string("terraform.tfstate"), '"terraform.tfstate"')

    def test_quotes_and_backslashes(self):
        self.assertEqual(hcl_string('a"b\\c'), '"a\\"b\\\\c"')

    def test_newlines(self):
        self.assertEqual(hcl_string("a\nb"), '"a\\nb"')

    def test_template_sequences(self):
        self.assertEqual(hcl_string("${var.env}/%{if x}"), '"$${var.env}/%%{if x}"')
