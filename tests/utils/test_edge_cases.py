"""Tests for utility functions to improve edge case coverage."""

import logging
from pathlib import Path

import pytest

from cdr_ingestor.exceptions import ConfigurationError
from cdr_ingestor.utils.config import load_yaml_config
from cdr_ingestor.utils.logging import (
    ContextualFormatter,
    DEFAULT_CONTEXT,
    LOG_FORMAT,
    StructuredLoggerAdapter,
    file_context,
    log_file_outcome,
    setup_logger,
)


class TestConfigUtils:
    """Test suite for configuration utilities."""

    def test_load_yaml_config_file_not_found(self):
        """Test loading non-existent YAML file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Configuration file not found"):
            load_yaml_config("/nonexistent/file.yaml")

    def test_load_yaml_config_invalid_yaml(self, tmp_path: Path):
        """Test loading invalid YAML raises ConfigurationError."""
        config_file = tmp_path / "broken.yaml"
        config_file.write_text("invalid: yaml: content: [\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_yaml_config(config_file)

    def test_load_yaml_config_empty_file(self, tmp_path: Path):
        """Test loading empty YAML file returns empty dict."""
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")

        assert load_yaml_config(config_file) == {}

    def test_load_yaml_config_valid_file(self, tmp_path: Path):
        config_file = tmp_path / "valid.yaml"
        config_file.write_text("sources:\n  occ:\n    tmp_table: RA_T_TMP_OCC\n")

        result = load_yaml_config(config_file)

        assert result == {"sources": {"occ": {"tmp_table": "RA_T_TMP_OCC"}}}


class TestLoggingUtils:
    """Test suite for logging utilities."""

    def test_setup_logger_returns_structured_adapter(self):
        logger = setup_logger("test.module", context={"source_dir": "OCC"})

        assert isinstance(logger, StructuredLoggerAdapter)
        assert logger.logger is logging.getLogger("test.module")
        assert logger.extra["source_dir"] == "OCC"
        assert logger.extra["file_name"] == "-"

    def test_setup_logger_level_override(self):
        logger = setup_logger("test.level", level="debug")

        assert logger.logger.level == logging.DEBUG

    def test_per_call_extra_overrides_defaults(self):
        adapter = StructuredLoggerAdapter(logging.getLogger("test.adapter"), {"stage": "load"})

        _, kwargs = adapter.process("message", {"extra": {"stage": "transform"}})

        assert kwargs["extra"]["stage"] == "transform"

    def test_formatter_fills_missing_context(self):
        """Records logged without file context still format cleanly."""
        formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)

        rendered = formatter.format(record)

        assert "source=- | file=- | size=-" in rendered
        assert rendered.endswith("hello")

    def test_file_context_without_size(self):
        assert file_context("OCC", "a.csv") == {
            "source_dir": "OCC",
            "file_name": "a.csv",
            "file_size": "-",
        }


class TestFileOutcomeLogging:
    """Terminal file outcomes are logged with structured context."""

    def test_success_logged_at_info(self, caplog):
        logger = logging.getLogger("test.outcome.success")

        with caplog.at_level(logging.INFO, logger="test.outcome.success"):
            log_file_outcome(logger, "OCC", "a.csv", 120, "SUCCESS", "TMP:3 DETAIL:3 REJECTED:0")

        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.getMessage() == "SUCCESS: TMP:3 DETAIL:3 REJECTED:0"
        assert record.source_dir == "OCC"
        assert record.file_size == 120
        assert record.stage == "finalize"

    def test_error_logged_with_additional_context(self, caplog):
        logger = logging.getLogger("test.outcome.error")

        with caplog.at_level(logging.INFO, logger="test.outcome.error"):
            log_file_outcome(
                logger,
                "MMG",
                "b.csv",
                42,
                "error",
                "CSV_INVALID: bad line",
                stage="validate",
                line_number=7,
            )

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.getMessage().startswith("ERROR: CSV_INVALID: bad line")
        assert "line_number" in record.getMessage()
        assert record.stage == "validate"
        assert record.line_number == 7
