# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import AsyncIterable
from typing import Any, TypeVar
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, Mock, patch

# 3p
from azure.core.exceptions import HttpResponseError

T = TypeVar("T")


class AsyncTestCase(IsolatedAsyncioTestCase):
    def patch_path(self, path: str, **kwargs: Any) -> MagicMock | AsyncMock:
        p = patch(path, **kwargs)
        self.addCleanup(p.stop)
        return p.start()


class TaskTestCase(AsyncTestCase):
    """Patches the credential and Datadog clients every task creates, and the task module's environment"""

    def setUp(self) -> None:
        self.credential = self.patch_path("tasks.task.AzureCliCredential", return_value=AsyncMockClient()).return_value
        self.datadog_api_client = self.patch_path("tasks.task.AsyncApiClient", return_value=AsyncMockClient())
        self.datadog_logs_api = self.patch_path("tasks.task.LogsApi", return_value=AsyncMock()).return_value
        self.datadog_metrics_api = self.patch_path("tasks.task.MetricsApi", return_value=AsyncMock()).return_value
        self.env: dict[str, str] = {}
        task_env_mock = self.patch_path("tasks.task.environ", create=True)
        task_env_mock.get.side_effect = lambda k, default=None: self.env.get(k, default)
        env_env_mock = self.patch_path("config.env.environ", create=True)
        env_env_mock.get.side_effect = lambda k, default=None: self.env.get(k, default)


async def async_generator(*items: T) -> AsyncIterable[T]:
    for x in items:
        if isinstance(x, Exception):
            raise x
        yield x


class UnexpectedException(Exception):
    """Testing for exceptions that we havent accounted for"""

    pass


class FakeHttpError(HttpResponseError):
    def __init__(self, status_code: int, code: str | None = None) -> None:
        self.status_code = status_code
        self.error = mock(code=code) if code else None
        self.message = f"({code or status_code}) something related to {status_code}"

    reason = None

    def __str__(self) -> str:
        return self.message


def mock(**kwargs: Any) -> Mock:
    m = Mock()
    for k, v in kwargs.items():
        setattr(m, k, v)
    return m


def AsyncMockClient(**kwargs: Any) -> AsyncMock:
    """An AsyncMock with the context manager methods set up to use as a client"""
    m = AsyncMock(**kwargs)
    m.__aenter__.return_value = m
    m.__aexit__.return_value = None
    return m
