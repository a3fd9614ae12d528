"""Versioned object fetches for pipeline source bundles."""

from __future__ import annotations

import asyncio

from deploy_lens.execution.throttle import call_external
from deploy_lens.sources.base import AwsSource

_MAX_BUNDLE_BYTES = 50 * 1024 * 1024


def _read_object(client, bucket: str, key: str, version_id: str) -> bytes:
    response = client.get_object(Bucket=bucket, Key=key, VersionId=version_id)
    body = response["Body"]
    try:
        return body.read(_MAX_BUNDLE_BYTES)
    finally:
        close = getattr(body, "close", None)
        if callable(close):
            close()


class ObjectStoreSource(AwsSource):
    service = "s3"

    async def get_object_version(self, bucket: str, key: str, version_id: str) -> bytes:
        return await call_external(
            self._throttler,
            self._policy,
            self.service,
            "get_object",
            lambda: asyncio.to_thread(_read_object, self._client, bucket, key, version_id),
        )
