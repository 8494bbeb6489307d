"""Status refresh for tracked accounts.

Re-reads each tracked account from chain and re-derives its lifecycle
state. A closed account never reopens, and a failed read leaves the prior
status untouched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from kora_rent_tracker.chain.client import GatewayError
from kora_rent_tracker.chain.models import AccountSnapshot
from kora_rent_tracker.chain.retry import RetryError, RetryPolicy
from kora_rent_tracker.tracker.models import (
    AccountKind,
    AccountStatus,
    RefreshResult,
    TrackedAccount,
)

if TYPE_CHECKING:
    from kora_rent_tracker.chain.client import SolanaGateway
    from kora_rent_tracker.storage.registry import SponsorshipRegistry

logger = logging.getLogger(__name__)

DEFAULT_PACE_EVERY = 10
DEFAULT_PACE_DELAY_SECONDS = 0.2

ProgressCallback = Callable[[int, int, TrackedAccount], None]
CheckpointCallback = Callable[["SponsorshipRegistry"], None]


def derive_status(kind: AccountKind, snapshot: AccountSnapshot | None) -> AccountStatus:
    """Lifecycle state implied by an account's current on-chain contents."""
    if snapshot is None:
        return AccountStatus.CLOSED

    match kind:
        case AccountKind.TOKEN:
            amount = snapshot.token_amount()
            # Unreadable layout: never report empty.
            if amount is None:
                return AccountStatus.ACTIVE
            return AccountStatus.EMPTY if amount == 0 else AccountStatus.ACTIVE
        case AccountKind.SYSTEM | AccountKind.PROGRAM_DERIVED | AccountKind.UNKNOWN:
            return AccountStatus.EMPTY if snapshot.is_data_empty else AccountStatus.ACTIVE


class StatusRefresher:
    """Re-derives tracked account statuses from chain state.

    Example:
        ```python
        refresher = StatusRefresher(gateway)
        result = await refresher.refresh(registry)
        print(result.empty, "accounts ready for review")
        ```
    """

    def __init__(
        self,
        gateway: SolanaGateway,
        *,
        retry_policy: RetryPolicy | None = None,
        pace_every: int = DEFAULT_PACE_EVERY,
        pace_delay_seconds: float = DEFAULT_PACE_DELAY_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._retry = retry_policy or RetryPolicy()
        self._pace_every = max(1, pace_every)
        self._pace_delay = pace_delay_seconds

    async def refresh(
        self,
        registry: SponsorshipRegistry,
        accounts: Iterable[TrackedAccount] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        on_checkpoint: CheckpointCallback | None = None,
    ) -> RefreshResult:
        """Refresh statuses in place on ``registry``.

        Args:
            registry: Registry that owns the accounts; mutated in place.
            accounts: Subset to refresh (defaults to every tracked account).
            on_progress: Called after each account with (done, total, account).
            on_checkpoint: Called with the registry after every pacing step
                so callers can persist partial progress.

        Returns:
            Counts per resulting status and how many statuses changed.
        """
        targets = list(accounts if accounts is not None else registry.accounts.values())
        total = len(targets)
        counts = {status: 0 for status in AccountStatus}
        changes: dict[str, str] = {}
        errors = 0
        fetched = 0

        for index, account in enumerate(targets, start=1):
            if account.status == AccountStatus.CLOSED:
                counts[AccountStatus.CLOSED] += 1
            else:
                if fetched and fetched % self._pace_every == 0:
                    if on_checkpoint is not None:
                        on_checkpoint(registry)
                    if self._pace_delay > 0:
                        await asyncio.sleep(self._pace_delay)
                fetched += 1
                try:
                    snapshot = await self._retry.call(
                        self._gateway.get_account, account.address
                    )
                except (RetryError, GatewayError, ValueError) as e:
                    errors += 1
                    counts[account.status] += 1
                    logger.warning("Status read failed for %s: %s", account.address, e)
                else:
                    new_status = derive_status(account.kind, snapshot)
                    previous = account.status
                    if registry.update_status(
                        account.address, new_status, checked_at=datetime.now(UTC)
                    ):
                        changes[account.address] = new_status.value
                        logger.info(
                            "Account %s: %s -> %s",
                            account.address,
                            previous.value,
                            new_status.value,
                        )
                    counts[new_status] += 1

            if on_progress is not None:
                on_progress(index, total, account)

        result = RefreshResult(
            active=counts[AccountStatus.ACTIVE],
            empty=counts[AccountStatus.EMPTY],
            closed=counts[AccountStatus.CLOSED],
            updated=len(changes),
            errors=errors,
            changes=changes,
        )
        logger.info(
            "Refreshed %d accounts: active=%d empty=%d closed=%d updated=%d errors=%d",
            total,
            result.active,
            result.empty,
            result.closed,
            result.updated,
            result.errors,
        )
        return result
