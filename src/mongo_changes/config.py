"""Configuration management for the schema-change orchestrator."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from mongo_changes.utils.patterns import compile_allow_pattern

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class TargetSettings(BaseModel):
    allow_uri_regex: str | None = Field(
        default=None,
        description="If set, only connection strings matching this pattern are accepted.",
    )
    server_selection_timeout_ms: int = Field(default=5_000, ge=100, le=120_000)
    retry_writes: bool = Field(default=True)

    @field_validator("allow_uri_regex")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value


class AuditSettings(BaseModel):
    """Where audit records live.

    ``mongo`` keeps them next to the target, in ``database.collection`` on the
    same deployment. ``sqlite`` keeps them in a local file.
    """

    backend: Literal["mongo", "sqlite"] = Field(default="mongo")
    database: str = Field(default="admin", min_length=1)
    collection: str = Field(default="cicd_changes_audit", min_length=1)
    sqlite_path: str = Field(default="./data/changes_audit.sqlite")
    sqlite_wal: bool = Field(default=True)
    list_default_limit: int = Field(default=100, ge=1, le=500)
    list_max_limit: int = Field(default=500, ge=1, le=5_000)


class RevertSettings(BaseModel):
    on_already_reverted: Literal["reject", "noop"] = Field(
        default="reject",
        description="What a revert does when the newest audit record is already reverted.",
    )


class IntegrationSettings(BaseModel):
    timeout_seconds: float = Field(default=15.0, ge=0.1, le=300.0)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    targets: TargetSettings = Field(default_factory=TargetSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    revert: RevertSettings = Field(default_factory=RevertSettings)
    integrations: IntegrationSettings = Field(default_factory=IntegrationSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "allow_uri_regex": "ALLOW_TARGET_URI_REGEX",
    "server_selection_timeout_ms": "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    "retry_writes": "MONGO_RETRY_WRITES",
    "audit_backend": "AUDIT_BACKEND",
    "audit_db": "AUDIT_DB",
    "audit_collection": "AUDIT_COLLECTION",
    "sqlite_path": "SQLITE_PATH",
    "sqlite_wal": "SQLITE_WAL",
    "list_default_limit": "AUDIT_LIST_DEFAULT_LIMIT",
    "list_max_limit": "AUDIT_LIST_MAX_LIMIT",
    "on_already_reverted": "REVERT_ON_ALREADY_REVERTED",
    "integration_timeout": "INTEGRATION_TIMEOUT_SECONDS",
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


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    audit_defaults = AuditSettings()

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "targets": {
            "allow_uri_regex": os.getenv(ENV_KEYS["allow_uri_regex"]),
            "server_selection_timeout_ms": _env_int(
                ENV_KEYS["server_selection_timeout_ms"],
                TargetSettings().server_selection_timeout_ms,
            ),
            "retry_writes": _env_bool(ENV_KEYS["retry_writes"], TargetSettings().retry_writes),
        },
        "audit": {
            "backend": os.getenv(ENV_KEYS["audit_backend"], audit_defaults.backend),
            "database": os.getenv(ENV_KEYS["audit_db"], audit_defaults.database),
            "collection": os.getenv(ENV_KEYS["audit_collection"], audit_defaults.collection),
            "sqlite_path": _resolve_path(
                os.getenv(ENV_KEYS["sqlite_path"], audit_defaults.sqlite_path)
            ),
            "sqlite_wal": _env_bool(ENV_KEYS["sqlite_wal"], audit_defaults.sqlite_wal),
            "list_default_limit": _env_int(
                ENV_KEYS["list_default_limit"], audit_defaults.list_default_limit
            ),
            "list_max_limit": _env_int(ENV_KEYS["list_max_limit"], audit_defaults.list_max_limit),
        },
        "revert": {
            "on_already_reverted": os.getenv(
                ENV_KEYS["on_already_reverted"], RevertSettings().on_already_reverted
            ),
        },
        "integrations": {
            "timeout_seconds": _env_float(
                ENV_KEYS["integration_timeout"], IntegrationSettings().timeout_seconds
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.targets.allow_uri_regex is not None:
        try:
            compile_allow_pattern(settings.targets.allow_uri_regex)
        except ValueError as exc:
            raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.audit.list_default_limit > settings.audit.list_max_limit:
        raise RuntimeError(
            "Invalid configuration: AUDIT_LIST_DEFAULT_LIMIT must not exceed "
            "AUDIT_LIST_MAX_LIMIT"
        )

    if settings.audit.backend == "sqlite":
        Path(settings.audit.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    return settings
