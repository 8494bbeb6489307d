"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from kora_rent_tracker.chain.models import AccountSnapshot
from kora_rent_tracker.chain.programs import (
    ATA_RENT_LAMPORTS,
    SYSTEM_PROGRAM_ID,
    TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
)
from kora_rent_tracker.tracker.models import (
    AccountKind,
    AccountStatus,
    Confidence,
    TrackedAccount,
)


def pubkey(n: int) -> str:
    """Deterministic base58 address for test number ``n``."""
    return str(Pubkey(bytes([n]) * 32))


OPERATOR_KEYPAIR = Keypair.from_seed(bytes([7]) * 32)


@pytest.fixture
def operator_keypair() -> Keypair:
    return OPERATOR_KEYPAIR


@pytest.fixture
def operator() -> str:
    """Operator (sponsor) address, matching ``operator_keypair``."""
    return str(OPERATOR_KEYPAIR.pubkey())


@pytest.fixture
def user() -> str:
    return pubkey(21)


@pytest.fixture
def treasury() -> str:
    return pubkey(33)


def token_account_data(owner: str, amount: int, *, mint: str | None = None) -> bytes:
    """SPL token account layout: mint | owner | amount | padding."""
    mint_bytes = bytes(Pubkey.from_string(mint or pubkey(99)))
    body = mint_bytes + bytes(Pubkey.from_string(owner)) + amount.to_bytes(8, "little")
    return body + bytes(TOKEN_ACCOUNT_SIZE - len(body))


@pytest.fixture
def token_data() -> Callable[..., bytes]:
    return token_account_data


@pytest.fixture
def make_account() -> Callable[..., TrackedAccount]:
    """Factory for tracked accounts with sensible defaults."""

    def _make(
        address: str | None = None,
        *,
        kind: AccountKind = AccountKind.TOKEN,
        status: AccountStatus = AccountStatus.ACTIVE,
        beneficiary: str | None = None,
        sponsor: str | None = None,
        age_days: float = 30.0,
        rent_lamports: int = ATA_RENT_LAMPORTS,
        owner_program: str | None = None,
        confidence: Confidence = Confidence.HIGH,
    ) -> TrackedAccount:
        if owner_program is None:
            owner_program = TOKEN_PROGRAM_ID if kind == AccountKind.TOKEN else SYSTEM_PROGRAM_ID
        return TrackedAccount(
            address=address or pubkey(50),
            creation_tx="sig-create",
            created_at=datetime.now(UTC) - timedelta(days=age_days),
            rent_lamports=rent_lamports,
            owner_program=owner_program,
            kind=kind,
            data_size=TOKEN_ACCOUNT_SIZE if kind == AccountKind.TOKEN else 0,
            sponsor=sponsor or str(OPERATOR_KEYPAIR.pubkey()),
            beneficiary=beneficiary or pubkey(21),
            status=status,
            confidence=confidence,
        )

    return _make


@pytest.fixture
def parsed_tx_result() -> Callable[..., dict[str, Any]]:
    """Factory for ``getTransaction`` jsonParsed result objects."""

    def _make(
        *,
        keys: list[tuple[str, bool]],
        instructions: list[dict[str, Any]],
        block_time: int | None = 1_700_000_000,
        err: Any = None,
        slot: int = 250_000_000,
    ) -> dict[str, Any]:
        return {
            "slot": slot,
            "blockTime": block_time,
            "meta": {"err": err, "fee": 5000},
            "transaction": {
                "signatures": ["sig"],
                "message": {
                    "accountKeys": [
                        {"pubkey": k, "signer": signer, "writable": True, "source": "transaction"}
                        for k, signer in keys
                    ],
                    "instructions": instructions,
                },
            },
        }

    return _make


def ata_create_ix(payer: str, account: str, wallet: str) -> dict[str, Any]:
    return {
        "program": "spl-associated-token-account",
        "programId": "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL",
        "parsed": {
            "type": "create",
            "info": {
                "source": payer,
                "payer": payer,
                "account": account,
                "wallet": wallet,
                "mint": pubkey(99),
                "systemProgram": SYSTEM_PROGRAM_ID,
                "tokenProgram": TOKEN_PROGRAM_ID,
            },
        },
        "stackHeight": None,
    }


def create_account_ix(
    source: str,
    new_account: str,
    *,
    owner: str = SYSTEM_PROGRAM_ID,
    lamports: int = 890_880,
    space: int = 0,
) -> dict[str, Any]:
    return {
        "program": "system",
        "programId": SYSTEM_PROGRAM_ID,
        "parsed": {
            "type": "createAccount",
            "info": {
                "source": source,
                "newAccount": new_account,
                "lamports": lamports,
                "space": space,
                "owner": owner,
            },
        },
        "stackHeight": None,
    }


@pytest.fixture
def ata_ix() -> Callable[..., dict[str, Any]]:
    return ata_create_ix


@pytest.fixture
def create_ix() -> Callable[..., dict[str, Any]]:
    return create_account_ix


@pytest.fixture
def mock_gateway() -> MagicMock:
    """Gateway double with async read and write methods."""
    gateway = MagicMock()
    gateway.get_account = AsyncMock(return_value=None)
    gateway.get_balance = AsyncMock(return_value=0)
    gateway.get_min_rent_exempt_balance = AsyncMock(return_value=ATA_RENT_LAMPORTS)
    gateway.get_signature_history = AsyncMock(return_value=[])
    gateway.get_parsed_transaction = AsyncMock(return_value=None)
    gateway.send_close_token_account = AsyncMock(return_value="sig-close")
    gateway.send_transfer = AsyncMock(return_value="sig-transfer")
    gateway.aclose = AsyncMock()
    return gateway


@pytest.fixture
def snapshot() -> Callable[..., AccountSnapshot]:
    def _make(
        address: str,
        *,
        lamports: int = ATA_RENT_LAMPORTS,
        owner: str = TOKEN_PROGRAM_ID,
        data: bytes = b"",
    ) -> AccountSnapshot:
        return AccountSnapshot(address=address, lamports=lamports, owner=owner, data=data)

    return _make
