"""Reclaim - Safety validation and reclaim execution."""

from kora_rent_tracker.reclaim.executor import ReclaimError, ReclaimExecutor
from kora_rent_tracker.reclaim.models import (
    ReclaimFailure,
    ReclaimReport,
    ReclaimTransaction,
    RiskLevel,
    SkippedAccount,
    ValidationChecks,
    ValidationResult,
)
from kora_rent_tracker.reclaim.validator import SafetyValidator

__all__ = [
    "ReclaimError",
    "ReclaimExecutor",
    "ReclaimFailure",
    "ReclaimReport",
    "ReclaimTransaction",
    "RiskLevel",
    "SafetyValidator",
    "SkippedAccount",
    "ValidationChecks",
    "ValidationResult",
]
