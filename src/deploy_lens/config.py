"""Configuration management for the deploy-lens correlation engine."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class ExecutionSettings(BaseModel):
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0.0, le=30.0)


class ThrottleSettings(BaseModel):
    max_concurrent: int = Field(default=2, ge=1, le=64)
    min_interval_ms: int = Field(
        default=500,
        ge=0,
        le=60_000,
        description="Minimum spacing between two dispatches to the same service.",
    )

    @property
    def min_interval_seconds(self) -> float:
        return self.min_interval_ms / 1000.0


class CacheSettings(BaseModel):
    ttl_seconds: int = Field(default=1800, ge=1, le=86_400)
    max_entries: int = Field(default=1000, ge=1, le=100_000)


class GitHubSettings(BaseModel):
    api_url: str = Field(default="https://api.github.com")
    owner: str | None = Field(default=None, description="Organisation or user owning the repos")
    token: str | None = Field(default=None)
    timeout_seconds: float = Field(default=5.0, ge=0.1, le=120.0)

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)


class TopologySettings(BaseModel):
    path: str = Field(default="./topology.yaml")


class ServerSettings(BaseModel):
    name: str = Field(default="deploy-lens")
    instructions: str = Field(
        default=(
            "Use these tools to inspect which build is deployed to each environment "
            "and whether backend and frontend updates can be deployed together."
        )
    )


class Settings(BaseModel):
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    throttle: ThrottleSettings = Field(default_factory=ThrottleSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    topology: TopologySettings = Field(default_factory=TopologySettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "topology_path": "TOPOLOGY_PATH",
    "aws_region": "AWS_DEFAULT_REGION",
    "aws_profile": "AWS_PROFILE",
    "max_retries": "DEPLOY_LENS_MAX_RETRIES",
    "github_token": "GITHUB_TOKEN",
    "github_owner": "GITHUB_OWNER",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def _env_str(key: str) -> str | None:
    value = os.getenv(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "server": {
            "name": os.getenv("DEPLOY_LENS_SERVER_NAME", ServerSettings().name),
            "instructions": os.getenv("DEPLOY_LENS_INSTRUCTIONS", ServerSettings().instructions),
        },
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "execution": {
            "sdk_timeout_seconds": _env_int(
                "SDK_TIMEOUT_SECONDS",
                ExecutionSettings().sdk_timeout_seconds,
            ),
            "max_retries": _env_int(
                ENV_KEYS["max_retries"],
                ExecutionSettings().max_retries,
            ),
            "retry_base_delay_seconds": _env_float(
                "RETRY_BASE_DELAY_SECONDS",
                ExecutionSettings().retry_base_delay_seconds,
            ),
        },
        "throttle": {
            "max_concurrent": _env_int(
                "THROTTLE_MAX_CONCURRENT",
                ThrottleSettings().max_concurrent,
            ),
            "min_interval_ms": _env_int(
                "THROTTLE_MIN_INTERVAL_MS",
                ThrottleSettings().min_interval_ms,
            ),
        },
        "cache": {
            "ttl_seconds": _env_int("CACHE_TTL_SECONDS", CacheSettings().ttl_seconds),
            "max_entries": _env_int("CACHE_MAX_ENTRIES", CacheSettings().max_entries),
        },
        "github": {
            "api_url": os.getenv("GITHUB_API_URL", GitHubSettings().api_url),
            "owner": _env_str(ENV_KEYS["github_owner"]),
            "token": _env_str(ENV_KEYS["github_token"]),
            "timeout_seconds": _env_float(
                "GITHUB_TIMEOUT_SECONDS",
                GitHubSettings().timeout_seconds,
            ),
        },
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "default_profile": os.getenv(ENV_KEYS["aws_profile"]),
        },
        "topology": {
            "path": _resolve_path(
                os.getenv(ENV_KEYS["topology_path"], TopologySettings().path)
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if _env_bool("DEPLOY_LENS_REQUIRE_GITHUB_TOKEN", False) and not settings.github.token:
        raise RuntimeError(
            "Invalid configuration: GITHUB_TOKEN is required when "
            "DEPLOY_LENS_REQUIRE_GITHUB_TOKEN is enabled"
        )

    return settings
