"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    ServiceConfiguration,
    ensure_runtime_configuration,
    get_service_configuration,
    get_settings,
    load_yaml_config,
)
from .csv_reader import StrictRecordReader, validate_csv_file
from .identifiers import resolve_staging_identifiers, sanitize_identifier
from .logging import log_file_outcome, setup_logger

__all__ = [
    "GlobalSettings",
    "ServiceConfiguration",
    "ensure_runtime_configuration",
    "get_settings",
    "get_service_configuration",
    "load_yaml_config",
    "StrictRecordReader",
    "validate_csv_file",
    "resolve_staging_identifiers",
    "sanitize_identifier",
    "log_file_outcome",
    "setup_logger",
]
