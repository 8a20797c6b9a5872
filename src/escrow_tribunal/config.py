"""Configuration management for the tribunal."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

REDACTION_MARKER = "***"
_SENSITIVE_KEYS = frozenset({"password", "secret", "token", "api_key"})


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None = None


class DatabaseConfig(BaseModel):
    """Database configuration. Use ``:memory:`` for a throwaway store."""

    model_config = ConfigDict(extra="forbid")
    path: str


class LedgerConfig(BaseModel):
    """Ledger custodian connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    timeout_seconds: int = Field(gt=0)


class FeesConfig(BaseModel):
    """Per-party dispute fee, charged at case opening."""

    model_config = ConfigDict(extra="forbid")
    fee_percent: int = Field(ge=0, le=100)
    min_fee: int = Field(ge=0)


class AdjudicationConfig(BaseModel):
    """Automated verdict settings."""

    model_config = ConfigDict(extra="forbid")
    acceptance_window_seconds: int = Field(gt=0)
    max_explanation_length: int = Field(gt=0)


class VotingConfig(BaseModel):
    """Consensus session settings."""

    model_config = ConfigDict(extra="forbid")
    duration_seconds: int
    min_duration_seconds: int = Field(gt=0)
    max_duration_seconds: int
    min_votes: int = Field(ge=1)
    outlier_multiplier: int = Field(ge=1)
    min_outlier_threshold: int = Field(ge=0, le=100)

    @model_validator(mode="after")
    def validate_durations(self) -> VotingConfig:
        """Default duration must sit inside the allowed override range."""
        if self.min_duration_seconds > self.max_duration_seconds:
            msg = "voting.min_duration_seconds must not exceed voting.max_duration_seconds"
            raise ValueError(msg)
        if not self.min_duration_seconds <= self.duration_seconds <= self.max_duration_seconds:
            msg = (
                "voting.duration_seconds must lie within "
                "[min_duration_seconds, max_duration_seconds]"
            )
            raise ValueError(msg)
        return self


class KarmaConfig(BaseModel):
    """Voter reputation bounds."""

    model_config = ConfigDict(extra="forbid")
    floor: int = Field(gt=0)
    start: int
    max: int
    max_penalty: int = Field(ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> KarmaConfig:
        """Require floor <= start <= max."""
        if not self.floor <= self.start <= self.max:
            msg = "karma bounds must satisfy floor <= start <= max"
            raise ValueError(msg)
        return self


class RolesConfig(BaseModel):
    """Static capability table used by the built-in authorizer."""

    model_config = ConfigDict(extra="forbid")
    automated_agents: list[str] = Field(default_factory=list)
    case_admins: list[str] = Field(default_factory=list)

    @field_validator("automated_agents", "case_admins")
    @classmethod
    def ids_must_not_be_blank(cls, value: list[str]) -> list[str]:
        """Reject blank identities at startup."""
        if any(not item.strip() for item in value):
            msg = "role identities must not be empty"
            raise ValueError(msg)
        return value


class Settings(BaseModel):
    """Root configuration container."""

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    logging: LoggingConfig
    database: DatabaseConfig
    ledger: LedgerConfig | None = None
    fees: FeesConfig
    adjudication: AdjudicationConfig
    voting: VotingConfig
    karma: KarmaConfig
    roles: RolesConfig = Field(default_factory=RolesConfig)


def get_config_path() -> Path:
    """Resolve configuration path from CONFIG_PATH, falling back to ./config.yaml."""
    override = os.environ.get("CONFIG_PATH")
    if override:
        return Path(override)
    return Path.cwd() / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Parse and validate a YAML config file."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


_settings_cache: dict[str, Settings] = {}


def get_settings() -> Settings:
    """Load settings once and return the cached instance."""
    settings = _settings_cache.get("current")
    if settings is None:
        settings = load_settings(get_config_path())
        _settings_cache["current"] = settings
    return settings


def clear_settings_cache() -> None:
    """Drop cached settings. Used in testing."""
    _settings_cache.clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key.lower() in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def get_safe_config() -> dict[str, Any]:
    """Return redacted config for logs/diagnostics."""
    return dict(_redact(get_settings().model_dump()))
