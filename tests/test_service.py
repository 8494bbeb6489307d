"""Tests for the service facade."""

from pathlib import Path

import pytest
from solders.pubkey import Pubkey

from kora_rent_tracker.chain.models import ParsedTx, SignatureRef
from kora_rent_tracker.chain.programs import ATA_RENT_LAMPORTS
from kora_rent_tracker.config import ConfigurationError, Settings
from kora_rent_tracker.service import RentTrackerService, ServiceState
from kora_rent_tracker.storage.lock import LockError
from kora_rent_tracker.storage.registry import RegistryStore, SponsorshipRegistry
from kora_rent_tracker.tracker.models import AccountStatus

ATA = str(Pubkey(bytes([60]) * 32))


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, operator: str) -> Settings:
    monkeypatch.setenv("OPERATOR_ADDRESS", operator)
    monkeypatch.delenv("OPERATOR_TREASURY_ADDRESS", raising=False)
    monkeypatch.delenv("OPERATOR_KEYPAIR_PATH", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("REGISTRY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("RECLAIM_REPORTS_DIR", str(tmp_path / "reports"))
    monkeypatch.setenv("RECLAIM_DRY_RUN", "true")
    monkeypatch.setenv("RETRY_MAX_RETRIES", "0")
    monkeypatch.setenv("INGEST_BATCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("INGEST_REFRESH_DELAY_SECONDS", "0")
    return Settings(_env_file=None)


@pytest.fixture
def service(settings, mock_gateway) -> RentTrackerService:
    return RentTrackerService(settings, gateway=mock_gateway)


def _seed(service: RentTrackerService, *accounts) -> RegistryStore:
    store = service.registry_store()
    registry = SponsorshipRegistry(operator=service.operator)
    registry.ingest(accounts)
    store.save(registry)
    return store


class TestLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_injected_gateway_not_closed(self, service, mock_gateway) -> None:
        async with service:
            assert service.state == ServiceState.RUNNING

        assert service.state == ServiceState.STOPPED
        mock_gateway.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_start(self, service) -> None:
        with pytest.raises(RuntimeError):
            await service.refresh_account_statuses()

    def test_operator_required(self, settings, mock_gateway) -> None:
        settings.operator.address = None

        with pytest.raises(ConfigurationError):
            RentTrackerService(settings, gateway=mock_gateway).load_registry()


class TestTriggers:
    """Tests for the locked load/operate/persist triggers."""

    @pytest.mark.asyncio
    async def test_ingest_persists_registry(
        self, service, mock_gateway, operator, user, parsed_tx_result, ata_ix
    ) -> None:
        result = parsed_tx_result(keys=[(operator, True)], instructions=[ata_ix(operator, ATA, user)])
        mock_gateway.get_signature_history.return_value = [SignatureRef("s1", 10)]
        mock_gateway.get_parsed_transaction.return_value = ParsedTx.from_rpc("s1", result)

        async with service:
            outcome = await service.ingest_transaction_history(tx_limit=10)

        assert outcome.new_found == 1
        registry = service.load_registry()
        assert ATA in registry
        assert registry.last_processed_signature == "s1"
        assert not service.registry_store().lock.path.exists()

    @pytest.mark.asyncio
    async def test_refresh_persists_status(
        self, service, mock_gateway, make_account, snapshot, token_data, user
    ) -> None:
        _seed(service, make_account(ATA, beneficiary=user))
        mock_gateway.get_account.return_value = snapshot(ATA, data=token_data(user, 0))

        async with service:
            result = await service.refresh_account_statuses()

        assert result.empty == 1
        assert service.load_registry().get(ATA).status == AccountStatus.EMPTY

    @pytest.mark.asyncio
    async def test_interrupted_ingest_keeps_completed_batches(
        self, service, settings, mock_gateway, operator, user, parsed_tx_result, ata_ix
    ) -> None:
        settings.ingest.batch_size = 2
        signatures = ["s5", "s4", "s3", "s2", "s1"]
        txs = {
            sig: ParsedTx.from_rpc(
                sig,
                parsed_tx_result(
                    keys=[(operator, True)],
                    instructions=[ata_ix(operator, str(Pubkey(bytes([n + 110]) * 32)), user)],
                ),
            )
            for n, sig in enumerate(signatures)
        }
        mock_gateway.get_signature_history.return_value = [
            SignatureRef(sig, 100 - n) for n, sig in enumerate(signatures)
        ]

        async def killed_at_s2(signature):
            if signature == "s2":
                raise RuntimeError("process killed")
            return txs[signature]

        mock_gateway.get_parsed_transaction.side_effect = killed_at_s2

        async with service:
            with pytest.raises(RuntimeError):
                await service.ingest_transaction_history(tx_limit=5)

        registry = service.load_registry()
        assert len(registry) == 2
        assert registry.last_processed_signature == "s5"
        assert registry.oldest_processed_signature == "s4"
        assert not service.registry_store().lock.path.exists()

    @pytest.mark.asyncio
    async def test_interrupted_refresh_keeps_checkpointed_statuses(
        self, service, settings, mock_gateway, make_account, snapshot, token_data, user
    ) -> None:
        settings.ingest.refresh_pace_every = 1
        first, second, third = (str(Pubkey(bytes([n]) * 32)) for n in (61, 62, 63))
        _seed(service, *(make_account(a, beneficiary=user) for a in (first, second, third)))

        async def read(address):
            if address == third:
                raise RuntimeError("process killed")
            return snapshot(address, data=token_data(user, 0))

        mock_gateway.get_account.side_effect = read

        async with service:
            with pytest.raises(RuntimeError):
                await service.refresh_account_statuses()

        registry = service.load_registry()
        assert registry.get(first).status == AccountStatus.EMPTY
        assert registry.get(second).status == AccountStatus.EMPTY
        assert registry.get(third).status == AccountStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_trigger_refused_while_locked(self, service, make_account) -> None:
        store = _seed(service, make_account(ATA))

        async with service:
            with store.locked():
                with pytest.raises(LockError):
                    await service.refresh_account_statuses()


class TestReclaim:
    """Tests for reclaim through the service."""

    @pytest.mark.asyncio
    async def test_dry_run_leaves_registry_untouched(
        self, service, mock_gateway, make_account, snapshot, token_data, operator
    ) -> None:
        store = _seed(service, make_account(ATA, status=AccountStatus.EMPTY))
        before = store.path.read_bytes()
        mock_gateway.get_account.return_value = snapshot(ATA, data=token_data(operator, 0))

        async with service:
            report = await service.execute_reclaim()

        assert report.dry_run
        assert report.accounts_reclaimed == 1
        assert store.path.read_bytes() == before
        mock_gateway.send_close_token_account.assert_not_called()
        assert len(service.report_store.list_reports()) == 1

    @pytest.mark.asyncio
    async def test_live_reclaim_records_success(
        self,
        settings,
        mock_gateway,
        make_account,
        snapshot,
        token_data,
        operator,
        operator_keypair,
    ) -> None:
        service = RentTrackerService(settings, gateway=mock_gateway, signer=operator_keypair)
        store = _seed(service, make_account(ATA, status=AccountStatus.EMPTY))
        owned = snapshot(ATA, data=token_data(operator, 0))
        mock_gateway.get_account.side_effect = [owned, owned, None]
        mock_gateway.get_balance.side_effect = [
            1_000_000,
            1_000_000 + ATA_RENT_LAMPORTS,
            1_000_000 + ATA_RENT_LAMPORTS,
        ]

        async with service:
            report = await service.execute_reclaim(dry_run=False)

        assert report.accounts_reclaimed == 1
        registry = store.load(operator)
        assert registry.get(ATA).status == AccountStatus.CLOSED
        assert registry.metrics.total_rent_reclaimed == ATA_RENT_LAMPORTS
        assert registry.metrics.total_accounts_closed == 1

    @pytest.mark.asyncio
    async def test_live_reclaim_without_keypair_refused(self, service, make_account) -> None:
        _seed(service, make_account(ATA, status=AccountStatus.EMPTY))

        async with service:
            with pytest.raises(ConfigurationError):
                await service.execute_reclaim(dry_run=False)
