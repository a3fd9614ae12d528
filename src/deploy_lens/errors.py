"""Error taxonomy and the shared rate-limit predicate."""

from __future__ import annotations

from botocore.exceptions import ClientError

RATE_LIMIT_STATUS_CODES = frozenset({429, 403})

RATE_LIMIT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "SlowDown",
    }
)

_RATE_LIMIT_MESSAGE_MARKERS = ("rate limit", "throttl", "too many requests")


class DeployLensError(Exception):
    """Base class for errors raised by the engine."""


class ConfigurationError(DeployLensError):
    """Settings or topology file are unusable."""


class RateLimitedError(DeployLensError):
    """An external service refused the call because of rate limiting.

    Never retried inside the engine; callers decide when to try again.
    """

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service} rate limited: {message}")
        self.service = service


class ExternalServiceError(DeployLensError):
    """A lookup failed after the bounded retry budget was spent."""

    def __init__(self, service: str, operation: str, message: str) -> None:
        super().__init__(f"{service}.{operation} failed: {message}")
        self.service = service
        self.operation = operation


class MalformedArtifactError(DeployLensError):
    """A deployed artifact bundle or its manifest could not be read."""


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, ClientError):
        metadata = exc.response.get("ResponseMetadata", {})
        status = metadata.get("HTTPStatusCode")
        return status if isinstance(status, int) else None
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def _error_code(exc: BaseException) -> str | None:
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code")
        return code if isinstance(code, str) else None
    return None


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True when *exc* means the remote side is throttling us.

    Applied uniformly to AWS and GitHub failures: HTTP 429/403, a throttling
    error code or class name, or a message that talks about rate limits.
    """
    if isinstance(exc, RateLimitedError):
        return True
    if _status_code(exc) in RATE_LIMIT_STATUS_CODES:
        return True
    code = _error_code(exc)
    if code in RATE_LIMIT_ERROR_CODES:
        return True
    if type(exc).__name__ in RATE_LIMIT_ERROR_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MESSAGE_MARKERS)
