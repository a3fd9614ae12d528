"""Tool helpers."""

from __future__ import annotations

import json

from deploy_lens.errors import ExternalServiceError, RateLimitedError
from deploy_lens.mcp_runtime import ToolResult
from deploy_lens.utils.jsonschema import validate_payload
from deploy_lens.utils.serialization import json_default


def validate_or_raise(schema: dict[str, object], payload: dict[str, object]) -> None:
    errors = validate_payload(schema, payload)
    if errors:
        raise ValueError("Input validation failed: " + "; ".join(errors))


def result_from_payload(payload: dict[str, object]) -> ToolResult:
    text = json.dumps(payload, ensure_ascii=True, indent=2, default=json_default)
    content = [{"type": "text", "text": text}]
    # Round-trip so structured content only holds JSON types.
    return ToolResult(content=content, structured_content=json.loads(text))


def rate_limited_result(exc: RateLimitedError) -> ToolResult:
    return result_from_payload(
        {
            "error": "rate_limited",
            "service": exc.service,
            "message": str(exc),
            "retryable": True,
        }
    )


def external_failure_result(exc: ExternalServiceError) -> ToolResult:
    return result_from_payload(
        {
            "error": "external_service_error",
            "service": exc.service,
            "operation": exc.operation,
            "message": str(exc),
            "retryable": True,
        }
    )
