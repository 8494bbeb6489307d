"""Service facade wiring the tracker components from settings.

Every mutating trigger holds the registry lock for its whole duration:
load, operate, persist, release. Long triggers persist after every batch,
which also renews the lock.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Any

from redis.asyncio import Redis
from solders.keypair import Keypair

from kora_rent_tracker.chain.client import SolanaGateway
from kora_rent_tracker.chain.rent import RentCalculator
from kora_rent_tracker.chain.retry import RetryPolicy
from kora_rent_tracker.config import ConfigurationError, Settings, get_settings, load_keypair
from kora_rent_tracker.reclaim.executor import ReclaimExecutor
from kora_rent_tracker.reclaim.models import ReclaimReport
from kora_rent_tracker.reclaim.validator import SafetyValidator
from kora_rent_tracker.reporting.store import ReportStore
from kora_rent_tracker.storage.registry import RegistryStore, SponsorshipRegistry
from kora_rent_tracker.tracker.ingest import SponsorshipIngestor
from kora_rent_tracker.tracker.models import IngestResult, RefreshResult, TrackedAccount
from kora_rent_tracker.tracker.refresher import StatusRefresher

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Service lifecycle states."""

    STOPPED = "stopped"
    RUNNING = "running"


class RentTrackerService:
    """Entry point for ingestion, status refresh and reclaim.

    Example:
        ```python
        async with RentTrackerService(get_settings()) as service:
            await service.ingest_transaction_history()
            await service.refresh_account_statuses()
            report = await service.execute_reclaim(dry_run=True)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        gateway: SolanaGateway | None = None,
        signer: Keypair | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            gateway: Pre-built gateway; the service will not close it.
            signer: Pre-loaded signing key; otherwise loaded from
                OPERATOR_KEYPAIR_PATH when a live reclaim is requested.
        """
        self._settings = settings or get_settings()
        self._gateway = gateway
        self._owns_gateway = gateway is None
        self._signer = signer
        self._redis: Redis | None = None
        self._state = ServiceState.STOPPED

        self._retry = RetryPolicy.from_settings(self._settings.retry)
        self._reports = ReportStore(self._settings.reclaim.reports_dir)

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def operator(self) -> str:
        address = self._settings.operator.address
        if not address:
            raise ConfigurationError("OPERATOR_ADDRESS is required")
        return address

    @property
    def report_store(self) -> ReportStore:
        return self._reports

    @property
    def registry_path(self) -> Path:
        return self._settings.registry.registry_path(self.operator)

    def registry_store(self) -> RegistryStore:
        return RegistryStore(
            self.registry_path,
            lock_stale_seconds=self._settings.registry.lock_stale_seconds,
        )

    async def start(self) -> None:
        if self._state == ServiceState.RUNNING:
            return
        if self._gateway is None:
            if self._settings.redis.url:
                self._redis = Redis.from_url(self._settings.redis.url)
            self._gateway = SolanaGateway.from_settings(self._settings, redis=self._redis)
        self._state = ServiceState.RUNNING
        logger.debug("Service started for operator %s", self._settings.operator.address)

    async def stop(self) -> None:
        if self._state == ServiceState.STOPPED:
            return
        if self._owns_gateway and self._gateway is not None:
            await self._gateway.aclose()
            self._gateway = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._state = ServiceState.STOPPED

    def _require_gateway(self) -> SolanaGateway:
        if self._gateway is None:
            raise RuntimeError("Service is not started")
        return self._gateway

    def load_registry(self) -> SponsorshipRegistry:
        """Read-only view of the registry (no lock taken)."""
        self._settings.validate_requirements(command="status")
        return self.registry_store().load(self.operator)

    async def ingest_transaction_history(
        self,
        *,
        tx_limit: int | None = None,
        backfill: bool = False,
    ) -> IngestResult:
        """Scan the operator's history and persist newly found sponsored accounts."""
        self._settings.validate_requirements(command="ingest")
        gateway = self._require_gateway()
        ingest = self._settings.ingest
        ingestor = SponsorshipIngestor(
            gateway,
            rent_calculator=RentCalculator(gateway),
            retry_policy=self._retry,
            page_size=ingest.page_size,
            batch_size=ingest.batch_size,
            batch_delay_seconds=ingest.batch_delay_seconds,
        )

        store = self.registry_store()
        with store.locked():
            registry = store.load(self.operator)
            result = await ingestor.ingest(
                registry,
                tx_limit=tx_limit or ingest.tx_limit,
                backfill=backfill,
                on_checkpoint=store.save,
            )
            store.save(registry)
        return result

    async def refresh_account_statuses(self) -> RefreshResult:
        """Re-derive every tracked account's status and persist the changes."""
        self._settings.validate_requirements(command="refresh")
        refresher = StatusRefresher(
            self._require_gateway(),
            retry_policy=self._retry,
            pace_every=self._settings.ingest.refresh_pace_every,
            pace_delay_seconds=self._settings.ingest.refresh_delay_seconds,
        )

        store = self.registry_store()
        with store.locked():
            registry = store.load(self.operator)
            result = await refresher.refresh(registry, on_checkpoint=store.save)
            store.save(registry)
        return result

    async def execute_reclaim(
        self,
        candidates: Sequence[TrackedAccount] | None = None,
        *,
        dry_run: bool | None = None,
    ) -> ReclaimReport:
        """Validate and reclaim candidates (registry ``Empty`` accounts by default).

        A live run is only performed when ``dry_run=False`` is passed
        explicitly or configured; confirmed successes are recorded in the
        registry as they happen.
        """
        dry_run = self._settings.reclaim.dry_run if dry_run is None else dry_run
        live_needs_key = not dry_run and self._signer is None
        self._settings.validate_requirements(
            command="reclaim-live" if live_needs_key else "reclaim"
        )
        gateway = self._require_gateway()

        signer = self._signer
        if not dry_run and signer is None:
            signer = self._load_signer()

        identity = str(signer.pubkey()) if signer is not None else self.operator
        validator = SafetyValidator.from_settings(
            gateway,
            self._settings.safety,
            identity=identity,
            retry_policy=self._retry,
        )
        treasury = self._settings.operator.effective_treasury or self.operator
        executor = ReclaimExecutor(
            gateway,
            validator,
            operator=self.operator,
            treasury=treasury,
            signer=signer,
            report_store=self._reports,
            max_accounts_per_run=self._settings.safety.max_accounts_per_run,
        )

        store = self.registry_store()
        with store.locked():
            registry = store.load(self.operator)
            targets = list(candidates) if candidates is not None else registry.reclaim_candidates()

            def record_success(account: TrackedAccount, lamports: int) -> None:
                if account.address not in registry:
                    logger.warning("Reclaimed %s is not in the registry", account.address)
                    return
                registry.record_reclaim(account.address, lamports)
                store.save(registry)

            return await executor.execute(
                targets,
                dry_run=dry_run,
                on_success=None if dry_run else record_success,
            )

    def _load_signer(self) -> Keypair:
        path = self._settings.operator.keypair_path
        if path is None:
            raise ConfigurationError("OPERATOR_KEYPAIR_PATH is required for live reclaim")
        signer = load_keypair(Path(path.get_secret_value()))
        self._signer = signer
        return signer

    async def __aenter__(self) -> RentTrackerService:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
