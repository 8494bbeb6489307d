"""Rent-exemption analysis for individual accounts."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from kora_rent_tracker.chain.client import GatewayError, SolanaGateway
from kora_rent_tracker.chain.programs import ATA_RENT_LAMPORTS, TOKEN_ACCOUNT_SIZE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RentStatus:
    """Rent position of one account."""

    address: str
    exists: bool
    lamports: int = 0
    data_size: int = 0
    rent_exempt_minimum: int = 0

    @property
    def is_rent_exempt(self) -> bool:
        return self.exists and self.lamports >= self.rent_exempt_minimum

    @property
    def excess_lamports(self) -> int:
        """Lamports held above the rent-exempt minimum."""
        return max(0, self.lamports - self.rent_exempt_minimum)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "exists": self.exists,
            "lamports": self.lamports,
            "data_size": self.data_size,
            "rent_exempt_minimum": self.rent_exempt_minimum,
            "is_rent_exempt": self.is_rent_exempt,
            "excess_lamports": self.excess_lamports,
        }


@dataclass(frozen=True)
class RentSummary:
    accounts: int
    existing: int
    total_lamports: int
    total_rent_exempt_minimum: int
    total_excess_lamports: int


class RentCalculator:
    """Computes rent-exemption figures through the gateway."""

    def __init__(self, gateway: SolanaGateway) -> None:
        self._gateway = gateway

    async def analyze(self, address: str) -> RentStatus:
        """Read an account and compare its balance against the rent minimum."""
        snapshot = await self._gateway.get_account(address)
        if snapshot is None:
            return RentStatus(address=address, exists=False)

        minimum = await self._gateway.get_min_rent_exempt_balance(snapshot.data_size)
        return RentStatus(
            address=address,
            exists=True,
            lamports=snapshot.lamports,
            data_size=snapshot.data_size,
            rent_exempt_minimum=minimum,
        )

    async def analyze_many(self, addresses: Sequence[str]) -> list[RentStatus]:
        # Sequential; the gateway rate limiter is shared.
        return [await self.analyze(address) for address in addresses]

    async def estimate_rent(self, data_size: int) -> int:
        """Rent-exempt minimum in lamports for ``data_size`` bytes."""
        return await self._gateway.get_min_rent_exempt_balance(data_size)

    async def token_account_rent(self) -> int:
        """Rent for a standard token account, falling back to the known constant."""
        try:
            return await self.estimate_rent(TOKEN_ACCOUNT_SIZE)
        except GatewayError as e:
            logger.warning(
                "Token account rent lookup failed, using %d lamports: %s",
                ATA_RENT_LAMPORTS,
                e,
            )
            return ATA_RENT_LAMPORTS

    @staticmethod
    def summarize(statuses: Iterable[RentStatus]) -> RentSummary:
        items = list(statuses)
        existing = [s for s in items if s.exists]
        return RentSummary(
            accounts=len(items),
            existing=len(existing),
            total_lamports=sum(s.lamports for s in existing),
            total_rent_exempt_minimum=sum(s.rent_exempt_minimum for s in existing),
            total_excess_lamports=sum(s.excess_lamports for s in existing),
        )
