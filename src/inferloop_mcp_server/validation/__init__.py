"""Synthetic dataset validation."""

from .gatf import CheckResult, GATFValidator, ValidationReport

__all__ = ["GATFValidator", "ValidationReport", "CheckResult"]
