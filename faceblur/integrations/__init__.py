"""Integration check helpers."""

from .checks import IntegrationCheckResult, run_all_checks

__all__ = [
    "IntegrationCheckResult",
    "run_all_checks",
]
