"""Sponsorship classification of parsed transactions.

This module decides, from a single transaction body, which created accounts
were paid for by the operator on behalf of somebody else. It reads nothing
but the transaction, so classifying the same transaction twice always
yields the same candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import UTC, datetime

from kora_rent_tracker.chain.models import ParsedInstruction, ParsedTx
from kora_rent_tracker.chain.programs import (
    ATA_RENT_LAMPORTS,
    SYSTEM_PROGRAM_ID,
    TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
    is_infrastructure_program,
    is_token_program,
)
from kora_rent_tracker.tracker.models import (
    AccountKind,
    AccountStatus,
    Confidence,
    TrackedAccount,
)

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_NAME = "system"
ATA_PROGRAM_NAME = "spl-associated-token-account"

CREATE_ACCOUNT = "createAccount"
CREATE_ACCOUNT_WITH_SEED = "createAccountWithSeed"
ATA_CREATE_TYPES = frozenset({"create", "createIdempotent"})


def account_kind_for_owner(owner: str) -> AccountKind:
    if is_token_program(owner):
        return AccountKind.TOKEN
    if owner == SYSTEM_PROGRAM_ID:
        return AccountKind.SYSTEM
    return AccountKind.PROGRAM_DERIVED


class SponsorshipClassifier:
    """Extracts sponsored-account candidates from operator transactions.

    Three creation shapes are recognised:
    1. System ``createAccount`` paid from the operator
    2. System ``createAccountWithSeed`` paid from the operator
    3. Associated token account ``create`` with the operator as payer

    A candidate whose beneficiary resolves to the operator is a
    self-transaction and is never returned.

    Example:
        ```python
        classifier = SponsorshipClassifier(operator="OP1...")
        candidates = classifier.classify(parsed_tx, known=registry.addresses)
        ```
    """

    def __init__(self, operator: str, *, ata_rent_lamports: int = ATA_RENT_LAMPORTS) -> None:
        """Initialize the classifier.

        Args:
            operator: Operator (sponsor) public key.
            ata_rent_lamports: Rent recorded for associated token accounts.
        """
        self._operator = operator
        self._ata_rent = ata_rent_lamports

    @property
    def operator(self) -> str:
        return self._operator

    @property
    def ata_rent_lamports(self) -> int:
        return self._ata_rent

    def classify(
        self,
        tx: ParsedTx,
        *,
        known: Collection[str] = frozenset(),
        observed_at: datetime | None = None,
    ) -> list[TrackedAccount]:
        """Classify one transaction.

        Args:
            tx: Parsed transaction body.
            known: Addresses already tracked; these are not returned again.
            observed_at: Creation time to use when the block time is unknown.

        Returns:
            Sponsored account candidates, in instruction order.
        """
        if tx.fee_payer != self._operator:
            return []
        if not tx.succeeded:
            logger.debug("Skipping failed transaction %s", tx.signature)
            return []

        created_at = tx.block_datetime or observed_at or datetime.now(UTC)
        candidates: list[TrackedAccount] = []
        seen: set[str] = set()

        for ix in tx.instructions:
            if not ix.is_parsed:
                continue
            candidate = self._match(ix, tx, created_at)
            if candidate is None:
                continue
            if candidate.beneficiary == self._operator:
                logger.debug(
                    "Dropping self-created account %s in %s", candidate.address, tx.signature
                )
                continue
            if candidate.address in seen or candidate.address in known:
                continue
            seen.add(candidate.address)
            candidates.append(candidate)

        return candidates

    def _match(
        self, ix: ParsedInstruction, tx: ParsedTx, created_at: datetime
    ) -> TrackedAccount | None:
        if ix.program == SYSTEM_PROGRAM_NAME and ix.parsed_type == CREATE_ACCOUNT:
            return self._from_create_account(ix, tx, created_at)
        if ix.program == SYSTEM_PROGRAM_NAME and ix.parsed_type == CREATE_ACCOUNT_WITH_SEED:
            return self._from_create_with_seed(ix, tx, created_at)
        if ix.program == ATA_PROGRAM_NAME and ix.parsed_type in ATA_CREATE_TYPES:
            return self._from_ata_create(ix, tx, created_at)
        return None

    def _from_create_account(
        self, ix: ParsedInstruction, tx: ParsedTx, created_at: datetime
    ) -> TrackedAccount | None:
        info = ix.info
        if info.get("source") != self._operator or not info.get("newAccount"):
            return None

        owner = str(info.get("owner") or SYSTEM_PROGRAM_ID)
        beneficiary = self._resolve_beneficiary(owner, tx)
        return TrackedAccount(
            address=str(info["newAccount"]),
            creation_tx=tx.signature,
            created_at=created_at,
            rent_lamports=int(info.get("lamports", 0)),
            owner_program=owner,
            kind=account_kind_for_owner(owner),
            data_size=int(info.get("space", 0)),
            sponsor=self._operator,
            beneficiary=beneficiary,
            confidence=self._confidence(beneficiary, owner),
            status=AccountStatus.ACTIVE,
        )

    def _from_create_with_seed(
        self, ix: ParsedInstruction, tx: ParsedTx, created_at: datetime
    ) -> TrackedAccount | None:
        info = ix.info
        if info.get("source") != self._operator or not info.get("newAccount"):
            return None

        owner = str(info.get("owner") or SYSTEM_PROGRAM_ID)
        # The seed base is the entity the address derives from.
        beneficiary = str(info.get("base") or owner)
        return TrackedAccount(
            address=str(info["newAccount"]),
            creation_tx=tx.signature,
            created_at=created_at,
            rent_lamports=int(info.get("lamports", 0)),
            owner_program=owner,
            kind=AccountKind.PROGRAM_DERIVED,
            data_size=int(info.get("space", 0)),
            sponsor=self._operator,
            beneficiary=beneficiary,
            confidence=self._confidence(beneficiary, owner),
            status=AccountStatus.ACTIVE,
        )

    def _from_ata_create(
        self, ix: ParsedInstruction, tx: ParsedTx, created_at: datetime
    ) -> TrackedAccount | None:
        info = ix.info
        if info.get("payer") != self._operator or not info.get("account"):
            return None
        wallet = info.get("wallet")
        if not wallet:
            return None

        token_program = str(info.get("tokenProgram") or TOKEN_PROGRAM_ID)
        beneficiary = str(wallet)
        return TrackedAccount(
            address=str(info["account"]),
            creation_tx=tx.signature,
            created_at=created_at,
            rent_lamports=self._ata_rent,
            owner_program=token_program,
            kind=AccountKind.TOKEN,
            data_size=TOKEN_ACCOUNT_SIZE,
            sponsor=self._operator,
            beneficiary=beneficiary,
            confidence=self._confidence(beneficiary, token_program),
            status=AccountStatus.ACTIVE,
        )

    def _resolve_beneficiary(self, owner: str, tx: ParsedTx) -> str:
        """First non-operator signer for infrastructure-owned accounts, else the owner."""
        if not is_infrastructure_program(owner):
            return owner
        for key in tx.account_keys[1:]:
            if key.signer and key.pubkey != self._operator:
                return key.pubkey
        return owner

    def _confidence(self, beneficiary: str, owner: str) -> Confidence:
        if beneficiary != self._operator and not is_infrastructure_program(beneficiary):
            return Confidence.HIGH
        if is_infrastructure_program(owner):
            return Confidence.MEDIUM
        return Confidence.LOW
