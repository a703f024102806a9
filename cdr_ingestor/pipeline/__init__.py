"""Ingestion pipeline: whitelist checks, staging loads, transform and orchestration."""

from __future__ import annotations

from .orchestrator import CdrPipeline, FileOutcome, FileResult, RunSummary
from .staging import BulkStagingLoader
from .transform import TransformEngine, TransformStats
from .whitelist import WhitelistResolver, build_column_cache

__all__ = [
    "BulkStagingLoader",
    "CdrPipeline",
    "FileOutcome",
    "FileResult",
    "RunSummary",
    "TransformEngine",
    "TransformStats",
    "WhitelistResolver",
    "build_column_cache",
]
