"""Reclaim execution with before/after balance verification.

Candidates are processed one at a time so that each treasury balance delta
can be attributed to a single transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from kora_rent_tracker.chain.client import GatewayError
from kora_rent_tracker.chain.programs import TOKEN_PROGRAM_ID, is_token_program
from kora_rent_tracker.reclaim.models import (
    ReclaimFailure,
    ReclaimReport,
    ReclaimTransaction,
    SkippedAccount,
)
from kora_rent_tracker.reporting.formatter import format_report_summary
from kora_rent_tracker.tracker.models import AccountKind, TrackedAccount

if TYPE_CHECKING:
    from solders.keypair import Keypair

    from kora_rent_tracker.chain.client import SolanaGateway
    from kora_rent_tracker.reclaim.validator import SafetyValidator
    from kora_rent_tracker.reporting.store import ReportStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACCOUNTS_PER_RUN = 50

SuccessCallback = Callable[[TrackedAccount, int], None]


class ReclaimError(Exception):
    """Raised when a reclaim cannot be dispatched or verified."""


class ReclaimExecutor:
    """Validates candidates and closes (or simulates closing) them.

    The success callback fires only after a live reclaim is confirmed and
    verified against the treasury balance, never for dry runs or failures.

    Example:
        ```python
        executor = ReclaimExecutor(gateway, validator, operator=op, treasury=op, signer=kp)
        report = await executor.execute(registry.reclaim_candidates(), dry_run=True)
        ```
    """

    def __init__(
        self,
        gateway: SolanaGateway,
        validator: SafetyValidator,
        *,
        operator: str,
        treasury: str,
        signer: Keypair | None = None,
        report_store: ReportStore | None = None,
        max_accounts_per_run: int = DEFAULT_MAX_ACCOUNTS_PER_RUN,
    ) -> None:
        """Initialize the executor.

        Args:
            gateway: Chain gateway used for balance reads and sends.
            validator: Safety validator run before every reclaim.
            operator: Operator address recorded in reports.
            treasury: Destination for reclaimed lamports.
            signer: Key used for live reclaims; dry runs need none.
            report_store: Where run reports are persisted.
            max_accounts_per_run: Cap on candidates processed per run.
        """
        self._gateway = gateway
        self._validator = validator
        self._operator = operator
        self._treasury = treasury
        self._signer = signer
        self._reports = report_store
        self._max_accounts = max_accounts_per_run

    async def execute(
        self,
        candidates: Sequence[TrackedAccount],
        *,
        dry_run: bool = True,
        on_success: SuccessCallback | None = None,
    ) -> ReclaimReport:
        """Reclaim (or simulate reclaiming) candidate accounts.

        Args:
            candidates: Accounts to consider, in order.
            dry_run: Simulate without touching the chain.
            on_success: Called with (account, lamports) after each verified
                live reclaim.

        Returns:
            The run report, also persisted when a report store is configured.

        Raises:
            ReclaimError: If a live run is requested without a signer.
        """
        if not dry_run and self._signer is None:
            raise ReclaimError("Live reclaim requires a signing keypair")

        report = ReclaimReport(operator=self._operator, treasury=self._treasury, dry_run=dry_run)
        batch = list(candidates)[: self._max_accounts]
        if len(candidates) > len(batch):
            logger.warning(
                "Capping reclaim run at %d of %d candidates", len(batch), len(candidates)
            )

        report.treasury_balance_before = await self._treasury_balance()
        treasury_running = report.treasury_balance_before

        for account in batch:
            report.accounts_analyzed += 1

            validation = await self._validator.validate(account)
            if not validation.can_reclaim:
                report.accounts_skipped += 1
                report.skipped.append(
                    SkippedAccount(
                        address=account.address,
                        reason=validation.reason,
                        risk_level=validation.risk_level,
                    )
                )
                logger.info("Skipping %s: %s", account.address, validation.reason)
                continue
            report.accounts_validated += 1

            if dry_run:
                report.transactions.append(
                    ReclaimTransaction(
                        address=account.address,
                        lamports_before=validation.lamports,
                        lamports_after=0,
                        lamports_reclaimed=validation.lamports,
                        tx_signature=None,
                        treasury_balance_before=treasury_running or 0,
                        treasury_balance_after=treasury_running or 0,
                        verified=False,
                        simulated=True,
                    )
                )
                report.accounts_reclaimed += 1
                report.total_lamports_reclaimed += validation.lamports
                continue

            try:
                tx = await self._reclaim_one(account, treasury_before=treasury_running)
            except Exception as e:
                # One account never aborts the batch.
                report.accounts_failed += 1
                report.errors.append(ReclaimFailure(address=account.address, error=str(e)))
                logger.warning("Reclaim failed for %s: %s", account.address, e, exc_info=True)
                continue

            report.transactions.append(tx)
            treasury_running = tx.treasury_balance_after
            if not tx.verified:
                report.accounts_failed += 1
                report.errors.append(
                    ReclaimFailure(
                        address=account.address,
                        error=f"Unverified reclaim {tx.tx_signature}",
                    )
                )
                logger.warning("Reclaim of %s could not be verified", account.address)
                treasury_running = None
                continue

            report.accounts_reclaimed += 1
            report.total_lamports_reclaimed += tx.lamports_reclaimed
            if on_success is not None:
                on_success(account, tx.lamports_reclaimed)

        report.treasury_balance_after = await self._treasury_balance()

        if self._reports is not None:
            self._reports.save(report)
        logger.info("%s", format_report_summary(report))
        return report

    async def _treasury_balance(self) -> int | None:
        try:
            return await self._gateway.get_balance(self._treasury)
        except GatewayError as e:
            logger.warning("Treasury balance read failed: %s", e)
            return None

    async def _reclaim_one(
        self, account: TrackedAccount, *, treasury_before: int | None
    ) -> ReclaimTransaction:
        assert self._signer is not None

        snapshot = await self._gateway.get_account(account.address)
        if snapshot is None:
            raise ReclaimError("Account disappeared before reclaim")
        lamports_before = snapshot.lamports
        if treasury_before is None:
            treasury_before = await self._gateway.get_balance(self._treasury)

        match account.kind:
            case AccountKind.TOKEN:
                program_id = (
                    account.owner_program
                    if is_token_program(account.owner_program)
                    else TOKEN_PROGRAM_ID
                )
                signature = await self._gateway.send_close_token_account(
                    account.address,
                    destination=self._treasury,
                    owner=self._signer,
                    program_id=program_id,
                )
            case AccountKind.SYSTEM:
                signature = await self._gateway.send_transfer(
                    self._signer, destination=self._treasury, lamports=lamports_before
                )
            case AccountKind.PROGRAM_DERIVED | AccountKind.UNKNOWN:
                raise ReclaimError(f"No automatic close for {account.kind.value} accounts")

        try:
            after = await self._gateway.get_account(account.address)
            treasury_after = await self._gateway.get_balance(self._treasury)
        except GatewayError as e:
            logger.warning("Sent %s but could not re-read balances: %s", signature, e)
            return ReclaimTransaction(
                address=account.address,
                lamports_before=lamports_before,
                lamports_after=lamports_before,
                lamports_reclaimed=0,
                tx_signature=signature,
                treasury_balance_before=treasury_before,
                treasury_balance_after=treasury_before,
                verified=False,
                simulated=False,
            )

        lamports_after = after.lamports if after is not None else 0
        return ReclaimTransaction(
            address=account.address,
            lamports_before=lamports_before,
            lamports_after=lamports_after,
            lamports_reclaimed=max(0, lamports_before - lamports_after),
            tx_signature=signature,
            treasury_balance_before=treasury_before,
            treasury_balance_after=treasury_after,
            verified=treasury_after > treasury_before,
            simulated=False,
        )
