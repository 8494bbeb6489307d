"""Data models for sponsorship tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class AccountKind(str, Enum):
    """What sort of account a sponsored creation produced."""

    SYSTEM = "system"
    TOKEN = "token"
    PROGRAM_DERIVED = "pda"
    UNKNOWN = "unknown"


class AccountStatus(str, Enum):
    """Lifecycle state of a tracked account."""

    ACTIVE = "active"
    EMPTY = "empty"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class Confidence(str, Enum):
    """How certain a creation is third-party sponsorship."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class TrackedAccount:
    """One sponsored account known to the registry.

    Only ``status`` and ``last_checked`` change after creation, and only
    through the registry.

    Attributes:
        address: Account public key.
        creation_tx: Signature of the transaction that created it.
        created_at: Block time of creation (ingest time when unknown).
        rent_lamports: Lamports locked at creation.
        owner_program: Program owning the account data.
        kind: Account kind derived at classification time.
        data_size: Payload size in bytes.
        sponsor: Operator that paid the rent.
        beneficiary: Address that actually controls the account.
        status: Current lifecycle state.
        last_checked: When the status was last refreshed.
        confidence: Classification confidence.
    """

    address: str
    creation_tx: str
    created_at: datetime
    rent_lamports: int
    owner_program: str
    kind: AccountKind
    data_size: int
    sponsor: str
    beneficiary: str
    confidence: Confidence
    status: AccountStatus = AccountStatus.ACTIVE
    last_checked: datetime | None = None

    @property
    def age_days(self) -> float:
        return (datetime.now(UTC) - self.created_at).total_seconds() / 86400

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the registry JSON schema."""
        return {
            "address": self.address,
            "creation_tx": self.creation_tx,
            "created_at": self.created_at.isoformat(),
            "rent_lamports": self.rent_lamports,
            "owner_program": self.owner_program,
            "kind": self.kind.value,
            "data_size": self.data_size,
            "sponsor": self.sponsor,
            "beneficiary": self.beneficiary,
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "confidence": self.confidence.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackedAccount:
        created_at = _parse_datetime(data.get("created_at"))
        if created_at is None:
            raise ValueError(f"Tracked account {data.get('address')} has no created_at")
        return cls(
            address=str(data["address"]),
            creation_tx=str(data["creation_tx"]),
            created_at=created_at,
            rent_lamports=int(data["rent_lamports"]),
            owner_program=str(data["owner_program"]),
            kind=AccountKind(data.get("kind", AccountKind.UNKNOWN.value)),
            data_size=int(data.get("data_size", 0)),
            sponsor=str(data["sponsor"]),
            beneficiary=str(data["beneficiary"]),
            status=AccountStatus(data.get("status", AccountStatus.UNKNOWN.value)),
            last_checked=_parse_datetime(data.get("last_checked")),
            confidence=Confidence(data["confidence"]),
        )


@dataclass(frozen=True)
class HistoryGap:
    """Unscanned signature window, exclusive at both ends.

    Left behind when an incremental run reaches its transaction limit before
    the previous watermark. Later runs drain it before scanning new history.
    """

    before: str
    until: str

    def to_dict(self) -> dict[str, str]:
        return {"before": self.before, "until": self.until}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryGap:
        return cls(before=str(data["before"]), until=str(data["until"]))


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingestion run."""

    processed: int = 0
    new_found: int = 0
    errors: int = 0
    skipped_failed: int = 0
    last_signature: str | None = None
    gap_pending: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "processed": self.processed,
            "new_found": self.new_found,
            "errors": self.errors,
            "skipped_failed": self.skipped_failed,
            "last_signature": self.last_signature,
            "gap_pending": self.gap_pending,
        }


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one status refresh pass."""

    active: int = 0
    empty: int = 0
    closed: int = 0
    updated: int = 0
    errors: int = 0
    changes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "active": self.active,
            "empty": self.empty,
            "closed": self.closed,
            "updated": self.updated,
            "errors": self.errors,
        }
