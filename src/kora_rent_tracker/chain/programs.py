"""Well-known Solana program IDs and protocol constants."""

from __future__ import annotations

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
MEMO_V1_PROGRAM_ID = "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo"
COMPUTE_BUDGET_PROGRAM_ID = "ComputeBudget111111111111111111111111111111"
TOKEN_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
SYSVAR_RENT_ID = "SysvarRent111111111111111111111111111111111"

TOKEN_PROGRAM_IDS: frozenset[str] = frozenset({TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})

# Programs whose ownership of an account says nothing about who controls it.
INFRASTRUCTURE_PROGRAM_IDS: frozenset[str] = frozenset(
    {
        SYSTEM_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        TOKEN_2022_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        MEMO_PROGRAM_ID,
        MEMO_V1_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        TOKEN_METADATA_PROGRAM_ID,
        SYSVAR_RENT_ID,
    }
)

# SPL token account layout: mint(32) | owner(32) | amount(u64 LE) | ...
TOKEN_ACCOUNT_SIZE = 165
TOKEN_OWNER_OFFSET = 32
TOKEN_AMOUNT_OFFSET = 64
TOKEN_AMOUNT_END = 72

# Rent-exempt minimum for a 165-byte token account at current rent parameters.
ATA_RENT_LAMPORTS = 2_039_280


def is_infrastructure_program(address: str | None) -> bool:
    return address is not None and address in INFRASTRUCTURE_PROGRAM_IDS


def is_token_program(address: str | None) -> bool:
    return address is not None and address in TOKEN_PROGRAM_IDS
