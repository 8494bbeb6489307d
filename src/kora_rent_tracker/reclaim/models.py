"""Data models for safety validation and reclaim runs."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class RiskLevel(str, Enum):
    """Risk attached to a validation decision."""

    SAFE = "safe"
    MEDIUM = "medium"
    HIGH = "high"
    BLOCKED = "blocked"


@dataclass
class ValidationChecks:
    """Which individual safety checks were evaluated and how they came out.

    ``None`` means the pipeline stopped before reaching the check.
    """

    in_deny_list: bool | None = None
    in_allow_list: bool | None = None
    meets_inactivity_threshold: bool | None = None
    has_recent_writes: bool | None = None
    exists_on_chain: bool | None = None
    below_max_reclaim: bool | None = None
    is_empty_or_zero_balance: bool | None = None
    ownership_verified: bool | None = None

    def to_dict(self) -> dict[str, bool | None]:
        return {
            "in_deny_list": self.in_deny_list,
            "in_allow_list": self.in_allow_list,
            "meets_inactivity_threshold": self.meets_inactivity_threshold,
            "has_recent_writes": self.has_recent_writes,
            "exists_on_chain": self.exists_on_chain,
            "below_max_reclaim": self.below_max_reclaim,
            "is_empty_or_zero_balance": self.is_empty_or_zero_balance,
            "ownership_verified": self.ownership_verified,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Per-account decision from the safety validator. Never persisted."""

    address: str
    can_reclaim: bool
    reason: str
    risk_level: RiskLevel
    checks: ValidationChecks
    lamports: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "can_reclaim": self.can_reclaim,
            "reason": self.reason,
            "risk_level": self.risk_level.value,
            "checks": self.checks.to_dict(),
            "lamports": self.lamports,
        }


@dataclass(frozen=True)
class ReclaimTransaction:
    """Outcome of one reclaimed (or simulated) account."""

    address: str
    lamports_before: int
    lamports_after: int
    lamports_reclaimed: int
    tx_signature: str | None
    treasury_balance_before: int
    treasury_balance_after: int
    verified: bool
    simulated: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "lamports_before": self.lamports_before,
            "lamports_after": self.lamports_after,
            "lamports_reclaimed": self.lamports_reclaimed,
            "tx_signature": self.tx_signature,
            "treasury_balance_before": self.treasury_balance_before,
            "treasury_balance_after": self.treasury_balance_after,
            "verified": self.verified,
            "simulated": self.simulated,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SkippedAccount:
    address: str
    reason: str
    risk_level: RiskLevel

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "reason": self.reason, "risk_level": self.risk_level.value}


@dataclass(frozen=True)
class ReclaimFailure:
    address: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "error": self.error}


def new_run_id() -> str:
    return f"reclaim-{uuid.uuid4()}"


@dataclass
class ReclaimReport:
    """Structured record of one reclaim run.

    Dry-run and live reports carry exactly the same fields.
    """

    operator: str
    treasury: str
    dry_run: bool
    run_id: str = field(default_factory=new_run_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    accounts_analyzed: int = 0
    accounts_validated: int = 0
    accounts_reclaimed: int = 0
    accounts_failed: int = 0
    accounts_skipped: int = 0
    total_lamports_reclaimed: int = 0
    treasury_balance_before: int | None = None
    treasury_balance_after: int | None = None
    transactions: list[ReclaimTransaction] = field(default_factory=list)
    skipped: list[SkippedAccount] = field(default_factory=list)
    errors: list[ReclaimFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp.isoformat(),
            "operator": self.operator,
            "treasury": self.treasury,
            "dry_run": self.dry_run,
            "accounts_analyzed": self.accounts_analyzed,
            "accounts_validated": self.accounts_validated,
            "accounts_reclaimed": self.accounts_reclaimed,
            "accounts_failed": self.accounts_failed,
            "accounts_skipped": self.accounts_skipped,
            "total_lamports_reclaimed": self.total_lamports_reclaimed,
            "treasury_balance_before": self.treasury_balance_before,
            "treasury_balance_after": self.treasury_balance_after,
            "transactions": [t.to_dict() for t in self.transactions],
            "skipped": [s.to_dict() for s in self.skipped],
            "errors": [e.to_dict() for e in self.errors],
        }
