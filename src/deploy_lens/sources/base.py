"""Shared plumbing for AWS-backed sources."""

from __future__ import annotations

from deploy_lens.execution.aws_client import call_aws_api_async
from deploy_lens.execution.throttle import RequestThrottler, RetryPolicy, call_external


class AwsSource:
    """Routes every SDK call through the shared throttler and retry policy."""

    service = "aws"

    def __init__(self, client, throttler: RequestThrottler, policy: RetryPolicy) -> None:
        self._client = client
        self._throttler = throttler
        self._policy = policy

    async def _call(self, method_name: str, **kwargs) -> dict[str, object]:
        return await call_external(
            self._throttler,
            self._policy,
            self.service,
            method_name,
            lambda: call_aws_api_async(self._client, method_name, **kwargs),
        )
