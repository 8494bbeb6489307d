"""Layered safety validation before any reclaim.

Checks run in a fixed order and stop at the first failure, so the reported
reason is deterministic:

1. Deny list
2. Allow list (when configured)
3. Inactivity threshold
4. Recent writes
5. Existence on chain
6. Per-account value cap
7. Kind-specific ownership and emptiness checks

An operator may only close accounts it owns. Paying for an account's
creation does not make the operator its owner.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from kora_rent_tracker.chain.client import GatewayError
from kora_rent_tracker.chain.programs import SYSTEM_PROGRAM_ID
from kora_rent_tracker.chain.retry import RetryError, RetryPolicy
from kora_rent_tracker.config import LAMPORTS_PER_SOL
from kora_rent_tracker.reclaim.models import RiskLevel, ValidationChecks, ValidationResult
from kora_rent_tracker.tracker.models import AccountKind, TrackedAccount

if TYPE_CHECKING:
    from kora_rent_tracker.chain.client import SolanaGateway
    from kora_rent_tracker.chain.models import AccountSnapshot

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_INACTIVE_DAYS = 7.0
DEFAULT_RECENT_WRITE_DAYS = 3.0
DEFAULT_RECENT_WRITE_SIGNATURE_LIMIT = 5
DEFAULT_MAX_RECLAIM_PER_ACCOUNT = 1 * LAMPORTS_PER_SOL
DEFAULT_HIGH_VALUE_THRESHOLD = LAMPORTS_PER_SOL // 10

Clock = Callable[[], datetime]

_LOOKUP_ERRORS = (RetryError, GatewayError, ValueError)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SafetyValidator:
    """Decides whether a tracked account may be reclaimed.

    Example:
        ```python
        validator = SafetyValidator(gateway, identity=str(keypair.pubkey()))
        result = await validator.validate(account)
        if not result.can_reclaim:
            print(result.risk_level.value, result.reason)
        ```
    """

    def __init__(
        self,
        gateway: SolanaGateway,
        *,
        identity: str,
        deny_list: Iterable[str] = (),
        allow_list: Iterable[str] | None = None,
        min_inactive_days: float = DEFAULT_MIN_INACTIVE_DAYS,
        recent_write_days: float = DEFAULT_RECENT_WRITE_DAYS,
        recent_write_signature_limit: int = DEFAULT_RECENT_WRITE_SIGNATURE_LIMIT,
        recent_write_fail_open: bool = False,
        max_reclaim_per_account: int = DEFAULT_MAX_RECLAIM_PER_ACCOUNT,
        high_value_threshold: int = DEFAULT_HIGH_VALUE_THRESHOLD,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        """Initialize the validator.

        Args:
            gateway: Chain gateway.
            identity: The caller's own signing identity.
            deny_list: Addresses that must never be touched.
            allow_list: If given, only these addresses may be reclaimed.
            min_inactive_days: Minimum age before an account is eligible.
            recent_write_days: Window in which any signature blocks a reclaim.
            recent_write_signature_limit: Signatures inspected for recent writes.
            recent_write_fail_open: Treat a failed recent-write lookup as clean.
            max_reclaim_per_account: Balance cap per account, in lamports.
            high_value_threshold: Accepted accounts above this are medium risk.
            retry_policy: Retry policy for chain reads.
            clock: Returns the current UTC time.
        """
        self._gateway = gateway
        self._identity = identity
        self._deny_list = frozenset(deny_list)
        self._allow_list = frozenset(allow_list) if allow_list is not None else None
        self._min_inactive = timedelta(days=min_inactive_days)
        self._recent_window = timedelta(days=recent_write_days)
        self._recent_limit = recent_write_signature_limit
        self._recent_fail_open = recent_write_fail_open
        self._max_reclaim = max_reclaim_per_account
        self._high_value = high_value_threshold
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        gateway: SolanaGateway,
        safety: Any,
        *,
        identity: str,
        retry_policy: RetryPolicy | None = None,
    ) -> SafetyValidator:
        """Build from a ``SafetySettings`` group."""
        return cls(
            gateway,
            identity=identity,
            deny_list=safety.deny_list,
            allow_list=safety.allow_list,
            min_inactive_days=safety.min_inactive_days,
            recent_write_days=safety.recent_write_days,
            recent_write_signature_limit=safety.recent_write_signature_limit,
            recent_write_fail_open=safety.recent_write_fail_open,
            max_reclaim_per_account=safety.max_reclaim_per_account,
            high_value_threshold=safety.high_value_threshold,
            retry_policy=retry_policy,
        )

    @property
    def identity(self) -> str:
        return self._identity

    async def validate(self, account: TrackedAccount) -> ValidationResult:
        """Run every check in order, stopping at the first failure."""
        checks = ValidationChecks()
        address = account.address

        def reject(reason: str, risk: RiskLevel, lamports: int = 0) -> ValidationResult:
            logger.debug("Rejected %s (%s): %s", address, risk.value, reason)
            return ValidationResult(
                address=address,
                can_reclaim=False,
                reason=reason,
                risk_level=risk,
                checks=checks,
                lamports=lamports,
            )

        checks.in_deny_list = address in self._deny_list
        if checks.in_deny_list:
            return reject("Account is in deny list", RiskLevel.BLOCKED)

        if self._allow_list is not None:
            checks.in_allow_list = address in self._allow_list
            if not checks.in_allow_list:
                return reject("Account is not in allow list", RiskLevel.BLOCKED)

        age = self._clock() - account.created_at
        checks.meets_inactivity_threshold = age >= self._min_inactive
        if not checks.meets_inactivity_threshold:
            return reject(
                f"Account is only {age.total_seconds() / 86400:.1f} days old "
                f"(min: {self._min_inactive.total_seconds() / 86400:g})",
                RiskLevel.MEDIUM,
            )

        recent = await self._has_recent_writes(address)
        checks.has_recent_writes = recent is not False
        if recent is None:
            return reject("Recent activity lookup failed", RiskLevel.HIGH)
        if recent:
            return reject(
                f"Account has recent activity in the last "
                f"{self._recent_window.total_seconds() / 86400:g} days",
                RiskLevel.HIGH,
            )

        try:
            snapshot = await self._retry.call(self._gateway.get_account, address)
        except _LOOKUP_ERRORS as e:
            logger.warning("Account read failed for %s: %s", address, e)
            return reject(f"Account state could not be read: {e}", RiskLevel.HIGH)

        checks.exists_on_chain = snapshot is not None
        if snapshot is None:
            return reject("Account already closed", RiskLevel.SAFE)

        lamports = snapshot.lamports
        checks.below_max_reclaim = lamports <= self._max_reclaim
        if not checks.below_max_reclaim:
            return reject(
                f"Account value ({lamports / LAMPORTS_PER_SOL:.6f} SOL) exceeds max "
                f"({self._max_reclaim / LAMPORTS_PER_SOL:.6f} SOL)",
                RiskLevel.HIGH,
                lamports,
            )

        kind_failure = self._check_kind(account.kind, snapshot, checks)
        if kind_failure is not None:
            reason, risk = kind_failure
            return reject(reason, risk, lamports)

        risk = RiskLevel.MEDIUM if lamports > self._high_value else RiskLevel.SAFE
        return ValidationResult(
            address=address,
            can_reclaim=True,
            reason=(
                f"Safe to reclaim: {account.kind.value} account, "
                f"{lamports / LAMPORTS_PER_SOL:.6f} SOL"
            ),
            risk_level=risk,
            checks=checks,
            lamports=lamports,
        )

    def _check_kind(
        self,
        kind: AccountKind,
        snapshot: AccountSnapshot,
        checks: ValidationChecks,
    ) -> tuple[str, RiskLevel] | None:
        match kind:
            case AccountKind.TOKEN:
                amount = snapshot.token_amount()
                owner = snapshot.token_owner()
                if amount is None or owner is None:
                    return "Token account data is unreadable", RiskLevel.HIGH
                checks.is_empty_or_zero_balance = amount == 0
                if not checks.is_empty_or_zero_balance:
                    return f"Token account holds {amount} tokens, never touched", RiskLevel.BLOCKED
                checks.ownership_verified = owner == self._identity
                if not checks.ownership_verified:
                    return (
                        f"Sponsored but not owned: token account owner is {owner}, "
                        "closing requires the owner's signature",
                        RiskLevel.BLOCKED,
                    )
                return None
            case AccountKind.PROGRAM_DERIVED:
                return "Program-derived accounts require manual review", RiskLevel.HIGH
            case AccountKind.UNKNOWN:
                return "Unknown account kind requires manual review", RiskLevel.HIGH
            case AccountKind.SYSTEM:
                # A system transfer must be signed by the source address itself.
                checks.ownership_verified = (
                    snapshot.owner == SYSTEM_PROGRAM_ID and snapshot.address == self._identity
                )
                if not checks.ownership_verified:
                    return (
                        "Sponsored but not owned: only the account's own key can move "
                        f"its lamports (signer is {self._identity})",
                        RiskLevel.BLOCKED,
                    )
                checks.is_empty_or_zero_balance = snapshot.is_data_empty
                if not checks.is_empty_or_zero_balance:
                    return "System account has data, not empty", RiskLevel.MEDIUM
                return None

    async def _has_recent_writes(self, address: str) -> bool | None:
        """True/False for recent signatures, or None if the lookup failed closed."""
        try:
            history = await self._retry.call(
                self._gateway.get_signature_history, address, limit=self._recent_limit
            )
        except _LOOKUP_ERRORS as e:
            if self._recent_fail_open:
                logger.warning(
                    "Recent-write lookup failed for %s, assuming none: %s", address, e
                )
                return False
            logger.warning("Recent-write lookup failed for %s: %s", address, e)
            return None

        cutoff = self._clock() - self._recent_window
        return any(
            ref.block_datetime is not None and ref.block_datetime >= cutoff for ref in history
        )
