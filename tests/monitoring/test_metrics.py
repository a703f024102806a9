"""Tests for the pipeline Prometheus metrics."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from cdr_ingestor.monitoring.metrics import (
    observe_file_duration,
    record_file_error,
    record_file_outcome,
    record_row_counts,
)


def _get_metric_value(metric_name: str, labels: dict[str, str] | None = None) -> float:
    """Helper to retrieve current metric value from registry."""
    labels = labels or {}
    value = REGISTRY.get_sample_value(metric_name, labels)
    return float(value) if value is not None else 0.0


class TestFileMetrics:
    """Tests for per-file counters."""

    def test_record_file_outcome_increments_counter(self) -> None:
        labels = {"source": "OCC", "status": "SUCCESS"}
        before = _get_metric_value("cdr_files_processed_total", labels)
        record_file_outcome("OCC", "SUCCESS")
        after = _get_metric_value("cdr_files_processed_total", labels)
        assert after == pytest.approx(before + 1)

    def test_record_file_error_increments_counter(self) -> None:
        """Errors are grouped by the ledger reason code."""
        before = _get_metric_value("cdr_file_errors_total", {"reason": "CSV_INVALID"})
        record_file_error("CSV_INVALID")
        after = _get_metric_value("cdr_file_errors_total", {"reason": "CSV_INVALID"})
        assert after == pytest.approx(before + 1)

    def test_observe_file_duration_updates_histogram(self) -> None:
        before_count = _get_metric_value("cdr_file_processing_seconds_count")
        observe_file_duration(2.5)
        after_count = _get_metric_value("cdr_file_processing_seconds_count")
        assert after_count == pytest.approx(before_count + 1)

    def test_observe_file_duration_handles_negative(self) -> None:
        """Negative duration should be clamped to zero."""
        before_sum = _get_metric_value("cdr_file_processing_seconds_sum")
        observe_file_duration(-1.0)
        after_sum = _get_metric_value("cdr_file_processing_seconds_sum")
        assert after_sum == pytest.approx(before_sum)


class TestRowMetrics:
    """Tests for row accounting counters."""

    def test_record_row_counts_adds_each_counter(self) -> None:
        labels = {"source": "MMG"}
        before = {
            name: _get_metric_value(name, labels)
            for name in (
                "cdr_rows_staged_total",
                "cdr_rows_inserted_total",
                "cdr_rows_rejected_total",
            )
        }

        record_row_counts("MMG", staged=10, inserted=7, rejected=3)

        assert _get_metric_value("cdr_rows_staged_total", labels) == pytest.approx(
            before["cdr_rows_staged_total"] + 10
        )
        assert _get_metric_value("cdr_rows_inserted_total", labels) == pytest.approx(
            before["cdr_rows_inserted_total"] + 7
        )
        assert _get_metric_value("cdr_rows_rejected_total", labels) == pytest.approx(
            before["cdr_rows_rejected_total"] + 3
        )

    def test_negative_counts_are_ignored(self) -> None:
        labels = {"source": "NEG"}
        before = _get_metric_value("cdr_rows_rejected_total", labels)
        record_row_counts("NEG", rejected=-4)
        after = _get_metric_value("cdr_rows_rejected_total", labels)
        assert after == pytest.approx(before)
