"""Tests for the status refresher."""

from __future__ import annotations

import pytest
from solders.pubkey import Pubkey

from kora_rent_tracker.chain.client import RPCError
from kora_rent_tracker.chain.models import AccountSnapshot
from kora_rent_tracker.chain.programs import SYSTEM_PROGRAM_ID
from kora_rent_tracker.chain.retry import RetryPolicy
from kora_rent_tracker.storage.registry import SponsorshipRegistry
from kora_rent_tracker.tracker.models import AccountKind, AccountStatus
from kora_rent_tracker.tracker.refresher import StatusRefresher, derive_status


def _pk(n: int) -> str:
    return str(Pubkey(bytes([n]) * 32))


ATA = _pk(60)
SYSTEM_ACCOUNT = _pk(61)


@pytest.fixture
def no_retry() -> RetryPolicy:
    return RetryPolicy(max_retries=0, base_delay=0)


@pytest.fixture
def refresher(mock_gateway, no_retry) -> StatusRefresher:
    return StatusRefresher(mock_gateway, retry_policy=no_retry, pace_delay_seconds=0)


class TestDeriveStatus:
    def test_missing_account_is_closed(self) -> None:
        assert derive_status(AccountKind.TOKEN, None) == AccountStatus.CLOSED
        assert derive_status(AccountKind.SYSTEM, None) == AccountStatus.CLOSED

    def test_token_zero_balance_is_empty(self, token_data, user) -> None:
        snap = AccountSnapshot(ATA, 2_039_280, "Tokenkeg", token_data(user, 0))
        assert derive_status(AccountKind.TOKEN, snap) == AccountStatus.EMPTY

    def test_token_with_balance_is_active(self, token_data, user) -> None:
        snap = AccountSnapshot(ATA, 2_039_280, "Tokenkeg", token_data(user, 5))
        assert derive_status(AccountKind.TOKEN, snap) == AccountStatus.ACTIVE

    def test_short_token_data_is_never_empty(self) -> None:
        snap = AccountSnapshot(ATA, 2_039_280, "Tokenkeg", bytes(40))
        assert derive_status(AccountKind.TOKEN, snap) == AccountStatus.ACTIVE

    def test_zeroed_data_is_empty(self) -> None:
        snap = AccountSnapshot(SYSTEM_ACCOUNT, 890_880, SYSTEM_PROGRAM_ID, bytes(16))
        assert derive_status(AccountKind.PROGRAM_DERIVED, snap) == AccountStatus.EMPTY

    def test_nonzero_data_is_active(self) -> None:
        snap = AccountSnapshot(SYSTEM_ACCOUNT, 890_880, SYSTEM_PROGRAM_ID, b"\x00\x01")
        assert derive_status(AccountKind.UNKNOWN, snap) == AccountStatus.ACTIVE

    def test_system_account_without_data_is_empty(self) -> None:
        snap = AccountSnapshot(SYSTEM_ACCOUNT, 890_880, SYSTEM_PROGRAM_ID)
        assert derive_status(AccountKind.SYSTEM, snap) == AccountStatus.EMPTY


class TestStatusRefresher:
    @pytest.mark.asyncio
    async def test_drained_ata_becomes_empty(
        self, refresher, mock_gateway, operator, user, make_account, snapshot, token_data
    ) -> None:
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA, beneficiary=user)])
        mock_gateway.get_account.return_value = snapshot(ATA, data=token_data(user, 0))

        result = await refresher.refresh(registry)

        assert registry.get(ATA).status == AccountStatus.EMPTY
        assert registry.get(ATA).last_checked is not None
        assert result.empty == 1
        assert result.updated == 1
        assert result.changes == {ATA: "empty"}

    @pytest.mark.asyncio
    async def test_vanished_account_is_closed(
        self, refresher, mock_gateway, operator, make_account
    ) -> None:
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA, status=AccountStatus.EMPTY)])
        mock_gateway.get_account.return_value = None

        result = await refresher.refresh(registry)

        assert registry.get(ATA).status == AccountStatus.CLOSED
        assert result.closed == 1
        assert registry.metrics.total_accounts_closed == 1

    @pytest.mark.asyncio
    async def test_closed_accounts_are_not_fetched(
        self, refresher, mock_gateway, operator, make_account
    ) -> None:
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA, status=AccountStatus.CLOSED)])

        result = await refresher.refresh(registry)

        mock_gateway.get_account.assert_not_called()
        assert result.closed == 1
        assert result.updated == 0

    @pytest.mark.asyncio
    async def test_read_error_keeps_prior_status(
        self, refresher, mock_gateway, operator, make_account, snapshot, token_data, user
    ) -> None:
        other = _pk(62)
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest(
            [make_account(ATA, status=AccountStatus.ACTIVE), make_account(other)]
        )

        async def get_account(address: str):
            if address == ATA:
                raise RPCError("node unavailable")
            return snapshot(other, data=token_data(user, 0))

        mock_gateway.get_account.side_effect = get_account

        result = await refresher.refresh(registry)

        assert registry.get(ATA).status == AccountStatus.ACTIVE
        assert registry.get(other).status == AccountStatus.EMPTY
        assert result.errors == 1
        assert result.active == 1
        assert result.empty == 1

    @pytest.mark.asyncio
    async def test_unchanged_status_not_counted_as_update(
        self, refresher, mock_gateway, operator, make_account, snapshot, token_data, user
    ) -> None:
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA)])
        mock_gateway.get_account.return_value = snapshot(ATA, data=token_data(user, 10))

        result = await refresher.refresh(registry)

        assert result.updated == 0
        assert result.active == 1

    @pytest.mark.asyncio
    async def test_progress_callback(
        self, refresher, mock_gateway, operator, make_account
    ) -> None:
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA), make_account(SYSTEM_ACCOUNT)])
        seen: list[tuple[int, int]] = []

        await refresher.refresh(registry, on_progress=lambda i, n, _: seen.append((i, n)))

        assert seen == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_checkpoint_between_pace_steps(
        self, mock_gateway, operator, user, make_account, snapshot, token_data
    ) -> None:
        refresher = StatusRefresher(
            mock_gateway,
            retry_policy=RetryPolicy(max_retries=0, base_delay=0),
            pace_every=1,
            pace_delay_seconds=0,
        )
        registry = SponsorshipRegistry(operator=operator)
        registry.ingest([make_account(ATA, beneficiary=user), make_account(SYSTEM_ACCOUNT)])
        mock_gateway.get_account.return_value = snapshot(ATA, data=token_data(user, 0))
        statuses: list[str] = []

        await refresher.refresh(
            registry, on_checkpoint=lambda reg: statuses.append(reg.get(ATA).status.value)
        )

        # One checkpoint, taken after the first account and before the second.
        assert statuses == ["empty"]
