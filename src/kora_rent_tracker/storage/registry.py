"""Sponsorship registry and its durable JSON storage.

The registry is scoped to a single operator. Lifetime metrics are only ever
incremented, so totals survive accounts later being pruned or reclassified.
Persistence writes a temp file in the target directory and renames it over
the registry, so readers only ever see a complete document.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from kora_rent_tracker.storage.files import atomic_write_text
from kora_rent_tracker.storage.lock import (
    DEFAULT_STALE_SECONDS,
    RegistryError,
    RegistryLock,
)
from kora_rent_tracker.tracker.models import AccountStatus, HistoryGap, TrackedAccount

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1


class PersistenceError(RegistryError):
    """Raised when the registry cannot be read or written."""


class UnknownAccountError(RegistryError):
    """Raised when an operation names an address the registry does not track."""


@dataclass
class RegistryMetrics:
    """Append-only lifetime counters."""

    total_accounts_sponsored: int = 0
    total_rent_locked: int = 0
    total_rent_reclaimed: int = 0
    total_accounts_closed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_accounts_sponsored": self.total_accounts_sponsored,
            "total_rent_locked": self.total_rent_locked,
            "total_rent_reclaimed": self.total_rent_reclaimed,
            "total_accounts_closed": self.total_accounts_closed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegistryMetrics:
        return cls(
            total_accounts_sponsored=int(data.get("total_accounts_sponsored", 0)),
            total_rent_locked=int(data.get("total_rent_locked", 0)),
            total_rent_reclaimed=int(data.get("total_rent_reclaimed", 0)),
            total_accounts_closed=int(data.get("total_accounts_closed", 0)),
        )


@dataclass
class SponsorshipRegistry:
    """All sponsored accounts discovered for one operator."""

    operator: str
    accounts: dict[str, TrackedAccount] = field(default_factory=dict)
    metrics: RegistryMetrics = field(default_factory=RegistryMetrics)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_processed_signature: str | None = None
    oldest_processed_signature: str | None = None
    pending_gap: HistoryGap | None = None
    total_transactions_processed: int = 0

    @property
    def addresses(self) -> frozenset[str]:
        return frozenset(self.accounts)

    def __len__(self) -> int:
        return len(self.accounts)

    def __contains__(self, address: object) -> bool:
        return address in self.accounts

    def get(self, address: str) -> TrackedAccount | None:
        return self.accounts.get(address)

    def _touch(self) -> None:
        self.last_updated = datetime.now(UTC)

    def ingest(self, candidates: Iterable[TrackedAccount]) -> int:
        """Add unseen candidates; already-tracked addresses are left untouched.

        Returns:
            Number of accounts added.
        """
        added = 0
        for candidate in candidates:
            if candidate.address in self.accounts:
                continue
            self.accounts[candidate.address] = candidate
            self.metrics.total_accounts_sponsored += 1
            self.metrics.total_rent_locked += candidate.rent_lamports
            added += 1
        if added:
            self._touch()
        return added

    def update_status(
        self,
        address: str,
        status: AccountStatus,
        *,
        checked_at: datetime | None = None,
    ) -> bool:
        """Set an account's status.

        Returns:
            True if the status changed. A closed account stays closed.

        Raises:
            UnknownAccountError: If the address is not tracked.
        """
        account = self.accounts.get(address)
        if account is None:
            raise UnknownAccountError(f"Account {address} is not tracked")

        previous = account.status
        account.last_checked = checked_at or datetime.now(UTC)
        if previous == status:
            return False
        # Closed is terminal: an address is never reopened.
        if previous == AccountStatus.CLOSED:
            logger.debug("Ignoring %s -> %s for closed account", address, status.value)
            return False

        account.status = status
        if status == AccountStatus.CLOSED:
            self.metrics.total_accounts_closed += 1
        self._touch()
        return True

    def record_reclaim(self, address: str, lamports: int) -> None:
        """Mark an account closed after a confirmed reclaim of ``lamports``.

        Raises:
            UnknownAccountError: If the address is not tracked.
        """
        account = self.accounts.get(address)
        if account is None:
            raise UnknownAccountError(f"Account {address} is not tracked")
        if lamports < 0:
            raise ValueError("lamports must be >= 0")

        if account.status != AccountStatus.CLOSED:
            self.metrics.total_accounts_closed += 1
        account.status = AccountStatus.CLOSED
        account.last_checked = datetime.now(UTC)
        self.metrics.total_rent_reclaimed += lamports
        self._touch()

    def record_transactions(self, count: int) -> None:
        self.total_transactions_processed += count
        if count:
            self._touch()

    def accounts_by_status(self, status: AccountStatus) -> list[TrackedAccount]:
        return [a for a in self.accounts.values() if a.status == status]

    def reclaim_candidates(self) -> list[TrackedAccount]:
        """Tracked accounts whose last refresh found them empty."""
        return self.accounts_by_status(AccountStatus.EMPTY)

    def summary(self) -> dict[str, Any]:
        counts = {status.value: 0 for status in AccountStatus}
        for account in self.accounts.values():
            counts[account.status.value] += 1
        return {
            "operator": self.operator,
            "tracked_accounts": len(self.accounts),
            "by_status": counts,
            "rent_locked_in_tracked": sum(
                a.rent_lamports for a in self.accounts.values() if a.status != AccountStatus.CLOSED
            ),
            "total_transactions_processed": self.total_transactions_processed,
            "last_processed_signature": self.last_processed_signature,
            "pending_gap": self.pending_gap.to_dict() if self.pending_gap else None,
            "last_updated": self.last_updated.isoformat(),
            "metrics": self.metrics.to_dict(),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": REGISTRY_VERSION,
            "operator": self.operator,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "last_processed_signature": self.last_processed_signature,
            "oldest_processed_signature": self.oldest_processed_signature,
            "pending_gap": self.pending_gap.to_dict() if self.pending_gap else None,
            "total_transactions_processed": self.total_transactions_processed,
            "accounts": [a.to_dict() for a in self.accounts.values()],
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SponsorshipRegistry:
        accounts = [TrackedAccount.from_dict(a) for a in data.get("accounts", [])]
        return cls(
            operator=str(data["operator"]),
            accounts={a.address: a for a in accounts},
            metrics=RegistryMetrics.from_dict(data.get("metrics", {})),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
            last_processed_signature=data.get("last_processed_signature"),
            oldest_processed_signature=data.get("oldest_processed_signature"),
            pending_gap=HistoryGap.from_dict(gap) if (gap := data.get("pending_gap")) else None,
            total_transactions_processed=int(data.get("total_transactions_processed", 0)),
        )


class RegistryStore:
    """Loads and atomically persists a registry file.

    Example:
        ```python
        store = RegistryStore(Path("data/sponsorship-registry-OP1.json"))
        with store.locked():
            registry = store.load("OP1")
            registry.ingest(candidates)
            store.save(registry)
        ```
    """

    def __init__(self, path: Path, *, lock_stale_seconds: float = DEFAULT_STALE_SECONDS) -> None:
        self._path = path
        self._lock = RegistryLock(
            path.with_name(path.name + ".lock"), stale_seconds=lock_stale_seconds
        )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock(self) -> RegistryLock:
        return self._lock

    @contextmanager
    def locked(self) -> Iterator[RegistryLock]:
        """Hold the single-writer lock for the duration of the block."""
        with self._lock:
            yield self._lock

    def load(self, operator: str) -> SponsorshipRegistry:
        """Read the registry, creating an empty one if no file exists yet.

        Raises:
            PersistenceError: If the file exists but cannot be parsed or
                belongs to a different operator.
        """
        if not self._path.exists():
            logger.info("No registry at %s, starting empty for %s", self._path, operator)
            return SponsorshipRegistry(operator=operator)

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            registry = SponsorshipRegistry.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Cannot read registry {self._path}: {e}") from e

        if registry.operator != operator:
            raise PersistenceError(
                f"Registry {self._path} belongs to {registry.operator}, not {operator}"
            )
        return registry

    def save(self, registry: SponsorshipRegistry) -> None:
        """Atomically replace the registry file.

        Raises:
            PersistenceError: If the write fails; the previous file is left intact.
            LockError: If this run holds the lock but another run has taken it over.
        """
        if self._lock.held:
            self._lock.touch()
        payload = json.dumps(registry.to_dict(), indent=2)
        try:
            atomic_write_text(self._path, payload)
        except OSError as e:
            raise PersistenceError(f"Cannot write registry {self._path}: {e}") from e

        logger.debug("Persisted registry %s (%d accounts)", self._path, len(registry))
