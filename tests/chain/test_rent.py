"""Tests for rent-exemption analysis."""

import pytest

from kora_rent_tracker.chain.client import RPCError
from kora_rent_tracker.chain.programs import ATA_RENT_LAMPORTS, SYSTEM_PROGRAM_ID
from kora_rent_tracker.chain.rent import RentCalculator, RentStatus


class TestRentCalculator:
    """Tests for RentCalculator."""

    @pytest.mark.asyncio
    async def test_analyze_existing(self, mock_gateway, snapshot) -> None:
        mock_gateway.get_account.return_value = snapshot(
            "acct", lamports=3_000_000, owner=SYSTEM_PROGRAM_ID, data=bytes(165)
        )

        status = await RentCalculator(mock_gateway).analyze("acct")

        mock_gateway.get_min_rent_exempt_balance.assert_awaited_once_with(165)
        assert status.exists
        assert status.is_rent_exempt
        assert status.excess_lamports == 3_000_000 - ATA_RENT_LAMPORTS

    @pytest.mark.asyncio
    async def test_analyze_missing(self, mock_gateway) -> None:
        status = await RentCalculator(mock_gateway).analyze("gone")

        assert not status.exists
        assert not status.is_rent_exempt

    @pytest.mark.asyncio
    async def test_token_account_rent_falls_back(self, mock_gateway) -> None:
        mock_gateway.get_min_rent_exempt_balance.side_effect = RPCError("down")

        assert await RentCalculator(mock_gateway).token_account_rent() == ATA_RENT_LAMPORTS

    def test_summarize(self) -> None:
        summary = RentCalculator.summarize(
            [
                RentStatus("a", True, lamports=100, rent_exempt_minimum=80),
                RentStatus("b", True, lamports=50, rent_exempt_minimum=80),
                RentStatus("c", False),
            ]
        )

        assert summary.accounts == 3
        assert summary.existing == 2
        assert summary.total_lamports == 150
        assert summary.total_excess_lamports == 20
