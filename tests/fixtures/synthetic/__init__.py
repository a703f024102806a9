"""Synthetic data fixtures package for testing."""

from __future__ import annotations

from . import cdr_fixtures

__all__ = [
    "cdr_fixtures",
]
