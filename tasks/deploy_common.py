# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.

# This product includes software developed at Datadog (https://www.datadoghq.com/) Copyright 2025 Datadog, Inc.

# stdlib
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import Any, TypeVar

# 3p
from azure.core.exceptions import ResourceNotFoundError
from azure.core.polling import AsyncLROPoller
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

T = TypeVar("T")

CONFIRM_POLL_SECONDS = 2

log = getLogger(__name__)


async def wait_for_resource(
    poller: AsyncLROPoller[T], confirm: Callable[[], Awaitable[Any]], wait_seconds: int = 30
) -> T:
    """Wait for the poller to complete and confirm the resource is readable.

    `confirm` should raise a ResourceNotFoundError while the resource is not visible yet.
    If it is still not visible after `wait_seconds`, the last ResourceNotFoundError is raised."""
    res = await poller.result()

    @retry(
        retry=retry_if_exception_type(ResourceNotFoundError),
        stop=stop_after_delay(wait_seconds),
        wait=wait_fixed(CONFIRM_POLL_SECONDS),
        before_sleep=lambda state: log.debug("Resource not visible yet (attempt %s)", state.attempt_number),
        reraise=True,
    )
    async def confirm_resource() -> None:
        await confirm()

    await confirm_resource()
    return res
