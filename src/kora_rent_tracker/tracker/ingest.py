"""Incremental ingestion of an operator's transaction history.

Walks the operator's signatures newest-first, classifies each successful
transaction and adds the resulting candidates to the registry. Runs resume
from the registry cursors, which are committed after every fetch batch, so an
interrupted run reprocesses at most one partial batch and the registry dedups
by address.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from kora_rent_tracker.chain.client import GatewayError
from kora_rent_tracker.chain.models import SignatureRef
from kora_rent_tracker.chain.retry import RetryError, RetryPolicy
from kora_rent_tracker.tracker.classifier import SponsorshipClassifier
from kora_rent_tracker.tracker.models import HistoryGap, IngestResult

if TYPE_CHECKING:
    from kora_rent_tracker.chain.client import SolanaGateway
    from kora_rent_tracker.chain.rent import RentCalculator
    from kora_rent_tracker.storage.registry import SponsorshipRegistry

logger = logging.getLogger(__name__)

DEFAULT_TX_LIMIT = 1000
DEFAULT_PAGE_SIZE = 1000
DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 0.3

CheckpointCallback = Callable[["SponsorshipRegistry"], None]


class _ScanMode(Enum):
    HEAD = "head"
    GAP = "gap"
    BACKFILL = "backfill"


@dataclass
class _Scan:
    """One newest-first walk over ``(until, before)``.

    ``cursor`` is the oldest signature with no read error at or above it in
    this walk; it stops moving at the first error.
    """

    mode: _ScanMode
    before: str | None
    until: str | None
    newest: str | None = None
    cursor: str | None = None
    clean: bool = True
    exhausted: bool = False

    def advance(self, signature: str) -> None:
        if self.clean:
            self.cursor = signature


@dataclass
class _Tally:
    processed: int = 0
    new_found: int = 0
    errors: int = 0
    skipped_failed: int = 0
    fetched: int = 0
    recorded: int = 0


class SponsorshipIngestor:
    """Feeds classified operator transactions into a registry.

    Example:
        ```python
        ingestor = SponsorshipIngestor(gateway, rent_calculator=RentCalculator(gateway))
        result = await ingestor.ingest(registry, tx_limit=500)
        print(f"{result.new_found} new sponsored accounts")
        ```
    """

    def __init__(
        self,
        gateway: SolanaGateway,
        *,
        rent_calculator: RentCalculator | None = None,
        retry_policy: RetryPolicy | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    ) -> None:
        """Initialize the ingestor.

        Args:
            gateway: Chain gateway.
            rent_calculator: Used to derive the token account rent once per run.
                Without one the protocol constant is used.
            retry_policy: Retry policy for history and transaction reads.
            page_size: Signatures requested per history page.
            batch_size: Transactions fetched between pacing delays.
            batch_delay_seconds: Pacing delay.
        """
        self._gateway = gateway
        self._rent = rent_calculator
        self._retry = retry_policy or RetryPolicy()
        self._page_size = page_size
        self._batch_size = max(1, batch_size)
        self._batch_delay = batch_delay_seconds

    async def _build_classifier(self, operator: str) -> SponsorshipClassifier:
        if self._rent is None:
            return SponsorshipClassifier(operator)
        ata_rent = await self._rent.token_account_rent()
        return SponsorshipClassifier(operator, ata_rent_lamports=ata_rent)

    async def ingest(
        self,
        registry: SponsorshipRegistry,
        *,
        tx_limit: int = DEFAULT_TX_LIMIT,
        backfill: bool = False,
        on_checkpoint: CheckpointCallback | None = None,
    ) -> IngestResult:
        """Scan up to ``tx_limit`` signatures and ingest sponsored accounts.

        An incremental run first drains any window a previous run left
        unscanned, then walks new history down to the watermark. Cursors
        only move past signatures that were handled without a read error.

        Args:
            registry: Registry to add candidates to; mutated in place.
            tx_limit: Maximum number of signatures to scan.
            backfill: Walk backwards from the oldest signature seen so far
                instead of forwards from the newest.
            on_checkpoint: Called with the registry after every fetch batch,
                once its cursors cover the batch, so callers can persist
                partial progress.

        Returns:
            Counts of processed transactions, new accounts and errors.
        """
        if tx_limit <= 0:
            raise ValueError("tx_limit must be > 0")

        operator = registry.operator
        classifier = await self._build_classifier(operator)

        if backfill:
            scans = [
                _Scan(_ScanMode.BACKFILL, before=registry.oldest_processed_signature, until=None)
            ]
        else:
            scans = []
            gap = registry.pending_gap
            if gap is not None:
                logger.info("Resuming unscanned history between %s and %s", gap.before, gap.until)
                scans.append(_Scan(_ScanMode.GAP, before=gap.before, until=gap.until))
            scans.append(
                _Scan(_ScanMode.HEAD, before=None, until=registry.last_processed_signature)
            )

        logger.info(
            "Ingesting history for %s (limit=%d, %s)",
            operator,
            tx_limit,
            "backfill" if backfill else f"until={registry.last_processed_signature or 'start'}",
        )

        tally = _Tally()
        for scan in scans:
            if tally.processed >= tx_limit:
                break
            if scan.mode is _ScanMode.HEAD and registry.pending_gap is not None:
                break
            await self._scan(
                registry,
                classifier,
                scan,
                tally,
                tx_limit=tx_limit,
                on_checkpoint=on_checkpoint,
            )
            self._commit(registry, scan, tally)

        if registry.pending_gap is not None:
            logger.warning(
                "History between %s and %s is not scanned yet; it is resumed on the next "
                "run (raise INGEST_TX_LIMIT to catch up sooner)",
                registry.pending_gap.before,
                registry.pending_gap.until,
            )

        result = IngestResult(
            processed=tally.processed,
            new_found=tally.new_found,
            errors=tally.errors,
            skipped_failed=tally.skipped_failed,
            last_signature=registry.last_processed_signature,
            gap_pending=registry.pending_gap is not None,
        )
        logger.info(
            "Ingestion done: processed=%d new=%d errors=%d failed_skipped=%d",
            result.processed,
            result.new_found,
            result.errors,
            result.skipped_failed,
        )
        return result

    async def _scan(
        self,
        registry: SponsorshipRegistry,
        classifier: SponsorshipClassifier,
        scan: _Scan,
        tally: _Tally,
        *,
        tx_limit: int,
        on_checkpoint: CheckpointCallback | None,
    ) -> None:
        before = scan.before
        while tally.processed < tx_limit:
            page_limit = min(self._page_size, tx_limit - tally.processed)
            try:
                page: list[SignatureRef] = await self._retry.call(
                    self._gateway.get_signature_history,
                    registry.operator,
                    limit=page_limit,
                    before=before,
                    until=scan.until,
                )
            except (RetryError, GatewayError) as e:
                tally.errors += 1
                scan.clean = False
                logger.warning("Signature history read failed for %s: %s", registry.operator, e)
                return

            if not page:
                scan.exhausted = True
                return

            if scan.newest is None:
                scan.newest = page[0].signature

            for ref in page:
                if ref.failed:
                    tally.processed += 1
                    tally.skipped_failed += 1
                    scan.advance(ref.signature)
                    continue

                if tally.fetched and tally.fetched % self._batch_size == 0:
                    self._commit(registry, scan, tally)
                    if on_checkpoint is not None:
                        on_checkpoint(registry)
                    if self._batch_delay > 0:
                        await asyncio.sleep(self._batch_delay)
                tally.processed += 1
                tally.fetched += 1

                try:
                    tx = await self._retry.call(
                        self._gateway.get_parsed_transaction, ref.signature
                    )
                except (RetryError, GatewayError) as e:
                    tally.errors += 1
                    scan.clean = False
                    logger.warning("Transaction %s could not be read: %s", ref.signature, e)
                    continue
                if tx is None:
                    tally.errors += 1
                    scan.clean = False
                    logger.warning("Transaction %s not found on node", ref.signature)
                    continue

                candidates = classifier.classify(
                    tx,
                    known=registry.addresses,
                    observed_at=datetime.now(UTC),
                )
                tally.new_found += registry.ingest(candidates)
                for account in candidates:
                    logger.info(
                        "Sponsored %s account %s for %s (%s confidence)",
                        account.kind.value,
                        account.address,
                        account.beneficiary,
                        account.confidence.value,
                    )
                scan.advance(ref.signature)

            before = page[-1].signature
            if len(page) < page_limit:
                scan.exhausted = True
                return

    @staticmethod
    def _commit(registry: SponsorshipRegistry, scan: _Scan, tally: _Tally) -> None:
        registry.record_transactions(tally.processed - tally.recorded)
        tally.recorded = tally.processed
        finished = scan.exhausted and scan.clean

        match scan.mode:
            case _ScanMode.HEAD:
                if scan.cursor is None:
                    return
                registry.last_processed_signature = scan.newest
                if scan.until is None:
                    registry.oldest_processed_signature = scan.cursor
                elif finished:
                    registry.pending_gap = None
                else:
                    registry.pending_gap = HistoryGap(before=scan.cursor, until=scan.until)
            case _ScanMode.GAP:
                if finished:
                    registry.pending_gap = None
                elif scan.cursor is not None and scan.until is not None:
                    registry.pending_gap = HistoryGap(before=scan.cursor, until=scan.until)
            case _ScanMode.BACKFILL:
                if scan.cursor is None:
                    return
                registry.oldest_processed_signature = scan.cursor
                if registry.last_processed_signature is None:
                    registry.last_processed_signature = scan.newest
