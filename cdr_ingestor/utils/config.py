"""Configuration loader and settings helpers for CDR_Ingestor."""

import logging
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


logger = logging.getLogger(__name__)

# Columns appended by the loader to every staged row.
TECHNICAL_COLUMNS: tuple[str, ...] = ("SOURCE_FILE", "SOURCE_DIR", "LOAD_TS")


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


class ColumnType(str, Enum):
    """Semantic type a staged text value is coerced to."""

    STRING = "string"
    NUMBER = "number"
    TIMESTAMP = "timestamp"


class CleanTransform(str, Enum):
    """Cleaning applied to a staged value before type coercion."""

    NONE = "none"
    TRIM = "trim"
    UPPER = "upper"
    CLEAN_MSISDN = "clean_msisdn"


class ColumnRule(BaseModel):
    """Mapping of one recognised input column onto the detail store."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    detail_column: str | None = None
    required: bool = False
    type: ColumnType = ColumnType.STRING
    transform: CleanTransform = CleanTransform.NONE
    max_length: int | None = Field(default=None, gt=0)
    default: str | None = None

    @field_validator("transform", mode="before")
    @classmethod
    def _none_means_no_transform(cls, value: Any) -> Any:
        if value is None:
            return CleanTransform.NONE
        return value

    @field_validator("default", mode="before")
    @classmethod
    def _stringify_default(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @model_validator(mode="after")
    def _check_combination(self) -> "ColumnRule":
        if self.required and self.default is not None:
            raise ValueError("a default is only allowed on optional columns")
        if self.max_length is not None and self.type is not ColumnType.STRING:
            raise ValueError("max_length is only allowed on string columns")
        return self


class SourceConfig(BaseModel):
    """Tables, dedup policy and column mapping for one source type."""

    model_config = ConfigDict(extra="forbid")

    tmp_table: str
    detail_table: str
    dedup_keys: list[str] = Field(default_factory=list)
    dedup_column: str = "DEDUP_KEY"
    start_time_column: str = "ORIG_START_TIME"
    mapping: dict[str, ColumnRule] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_mapping(self) -> "SourceConfig":
        if not self.mapping:
            return self
        if not self.dedup_keys:
            raise ValueError("dedup_keys must be defined when a mapping is configured")
        missing = [key for key in self.dedup_keys if key not in self.mapping]
        if missing:
            raise ValueError(f"dedup_keys not present in mapping: {', '.join(missing)}")
        start_rule = self.mapping.get(self.start_time_column)
        if start_rule is None or start_rule.type is not ColumnType.TIMESTAMP:
            raise ValueError(
                f"start_time_column '{self.start_time_column}' must be a timestamp column"
            )
        return self

    @property
    def transformable(self) -> bool:
        """Return True when a detail mapping exists for this source type."""

        return bool(self.mapping)


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and environment overrides."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    sources: dict[str, SourceConfig] = Field(default_factory=dict)

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()

    @field_validator("sources", mode="before")
    @classmethod
    def _normalize_source_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).lower(): item for key, item in value.items()}
        return value

    def source(self, source_type: str) -> SourceConfig:
        """Return the configuration for ``source_type`` or raise."""

        try:
            return self.sources[source_type.lower()]
        except KeyError:
            raise ConfigurationError(
                f"No source configuration defined for '{source_type}'"
            ) from None


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class RetrySettings(BaseModel):
    """Retry behaviour for establishing remote connections."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    backoff_factor: float = Field(default=0.5, gt=0)
    max_backoff: float = Field(default=10.0, gt=0)


class FtpSettings(BaseModel):
    """FTP connection options for the remote file area."""

    model_config = ConfigDict(extra="forbid")

    host: str | None = None
    port: int = Field(default=21, ge=1, le=65535)
    user: str = "anonymous"
    password: str = ""
    timeout: float = Field(default=30.0, gt=0)
    passive: bool = True
    retry: RetrySettings = RetrySettings()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CDR_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    config_dir: Path = Path("config")
    local_root: Path = Path("storage")
    ftp: FtpSettings = FtpSettings()
    remote_paths: dict[str, str] = Field(
        default_factory=lambda: {"MMG": "/home/MMG", "OCC": "/home/OCC"}
    )
    delete_after_success: bool = True
    file_extension: str = ".csv"
    csv_delimiter: str = Field(default=",", min_length=1, max_length=1)
    csv_enclosure: str = Field(default='"', min_length=1, max_length=1)
    timestamp_unit: Literal["seconds", "milliseconds"] = "seconds"
    batch_size: int = Field(default=2000, ge=1)
    tmp_cleanup_strategy: Literal["on_success", "on_error", "never"] = "on_success"
    tmp_whitelist_mode: Literal["dynamic", "permissive", "strict"] = "dynamic"
    validation_mode: Literal["single_pass", "two_pass"] = "single_pass"
    whitelist_cache_ttl_seconds: int = Field(default=86400, ge=1)
    progress_every_rows: int = Field(default=50000, ge=1)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator(
        "timestamp_unit",
        "tmp_cleanup_strategy",
        "tmp_whitelist_mode",
        "validation_mode",
        mode="before",
    )
    @classmethod
    def _normalize_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("remote_paths", mode="before")
    @classmethod
    def _normalize_categories(cls, value: Any) -> Any:
        """Source categories are upper-case directory labels (MMG, OCC)."""

        if isinstance(value, dict):
            return {str(key).upper(): item for key, item in value.items()}
        return value

    @field_validator("config_dir", "local_root", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator("file_extension")
    @classmethod
    def _normalize_extension(cls, value: str) -> str:
        value = value.strip().lower()
        return value if value.startswith(".") else f".{value}"

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()


def _deep_merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries without mutating the inputs."""

    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


@lru_cache(maxsize=8)
def _load_service_configuration_cached(config_dir: str, profile: str) -> ServiceConfiguration:
    """Load and cache the service configuration for a given profile."""

    directory = Path(config_dir)
    base_path = directory / "settings.base.yaml"
    if not base_path.exists():
        raise ConfigurationError(
            f"Missing base configuration template at '{base_path}'. "
            "Create this file to define the source mappings."
        )

    base_config = load_yaml_config(base_path)

    profile_path = directory / f"settings.{profile}.yaml"
    profile_config: dict[str, Any] = {}
    if profile_path.exists():
        profile_config = load_yaml_config(profile_path)
    else:
        logger.debug("No configuration override found for profile '%s'", profile)

    merged = _deep_merge_dicts(base_config, profile_config)
    merged.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            "Invalid configuration template for profile "
            f"'{profile}': {exc}"
        ) from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the merged service configuration for the active profile."""

    if settings is None:
        settings = get_settings()

    profile = settings.config_profile or settings.environment

    if reload:
        _load_service_configuration_cached.cache_clear()

    return _load_service_configuration_cached(str(settings.config_dir), profile.lower())


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Validate configuration templates and ensure required env vars are present."""

    settings = settings or get_settings()

    service_config = get_service_configuration(settings=settings, reload=True)

    missing = sorted(var for var in service_config.required_env if not os.environ.get(var))
    if missing:
        joined = ", ".join(missing)
        raise ConfigurationError(
            "Missing required environment variables: "
            f"{joined}. Configure them via configuration templates or .env files."
        )

    for category in settings.remote_paths:
        if category.lower() not in service_config.sources:
            raise ConfigurationError(
                f"Remote path configured for '{category}' but no source mapping exists"
            )

    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()


def clear_settings_cache() -> None:
    """Forget cached settings and service configuration without rebuilding them."""

    _get_settings_cached.cache_clear()
    _load_service_configuration_cached.cache_clear()
