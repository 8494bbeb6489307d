"""Data models for chain reads."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from solders.pubkey import Pubkey

from kora_rent_tracker.chain.programs import (
    TOKEN_AMOUNT_END,
    TOKEN_AMOUNT_OFFSET,
    TOKEN_OWNER_OFFSET,
)


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time view of an on-chain account."""

    address: str
    lamports: int
    owner: str
    data: bytes = b""
    executable: bool = False

    @classmethod
    def from_account(cls, address: str, account: Any) -> "AccountSnapshot":
        """Create a snapshot from a solders ``Account`` value."""
        return cls(
            address=address,
            lamports=int(account.lamports),
            owner=str(account.owner),
            data=bytes(account.data),
            executable=bool(account.executable),
        )

    @property
    def data_size(self) -> int:
        return len(self.data)

    @property
    def is_data_empty(self) -> bool:
        """True when the payload has no bytes or only zero bytes."""
        return not any(self.data)

    def token_amount(self) -> int | None:
        """Read the SPL token amount field, or None if the layout is too short."""
        if len(self.data) < TOKEN_AMOUNT_END:
            return None
        return int.from_bytes(self.data[TOKEN_AMOUNT_OFFSET:TOKEN_AMOUNT_END], "little")

    def token_owner(self) -> str | None:
        """Read the SPL token account owner field, or None if too short."""
        if len(self.data) < TOKEN_AMOUNT_OFFSET:
            return None
        return str(Pubkey.from_bytes(self.data[TOKEN_OWNER_OFFSET:TOKEN_AMOUNT_OFFSET]))


@dataclass(frozen=True)
class SignatureRef:
    """One entry of an address's signature history."""

    signature: str
    slot: int
    block_time: int | None = None
    err: Any = None

    @classmethod
    def from_rpc(cls, status: Any) -> "SignatureRef":
        """Create from a solders ``RpcConfirmedTransactionStatusWithSignature``."""
        return cls(
            signature=str(status.signature),
            slot=int(status.slot),
            block_time=status.block_time,
            err=status.err,
        )

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def block_datetime(self) -> datetime | None:
        if self.block_time is None:
            return None
        return datetime.fromtimestamp(self.block_time, tz=UTC)


@dataclass(frozen=True)
class AccountKey:
    """Account key entry of a parsed transaction message."""

    pubkey: str
    signer: bool = False
    writable: bool = False


@dataclass(frozen=True)
class ParsedInstruction:
    """A top-level instruction as returned by ``jsonParsed`` encoding."""

    program_id: str
    program: str | None = None
    parsed_type: str | None = None
    info: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedInstruction":
        parsed = data.get("parsed")
        parsed_type = None
        info: dict[str, Any] = {}
        # Unparsed instructions carry raw base58 data instead of a dict.
        if isinstance(parsed, dict):
            parsed_type = parsed.get("type")
            raw_info = parsed.get("info")
            if isinstance(raw_info, dict):
                info = raw_info
        return cls(
            program_id=str(data.get("programId", "")),
            program=data.get("program"),
            parsed_type=parsed_type,
            info=info,
        )

    @property
    def is_parsed(self) -> bool:
        return self.parsed_type is not None


@dataclass(frozen=True)
class ParsedTx:
    """A parsed transaction body."""

    signature: str
    slot: int
    block_time: int | None
    account_keys: tuple[AccountKey, ...]
    instructions: tuple[ParsedInstruction, ...]
    err: Any = None

    @classmethod
    def from_rpc(cls, signature: str, result: dict[str, Any]) -> "ParsedTx":
        """Create from the ``result`` object of a ``getTransaction`` jsonParsed call."""
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}

        keys: list[AccountKey] = []
        for entry in message.get("accountKeys", []):
            if isinstance(entry, str):
                keys.append(AccountKey(pubkey=entry))
            else:
                keys.append(
                    AccountKey(
                        pubkey=str(entry["pubkey"]),
                        signer=bool(entry.get("signer", False)),
                        writable=bool(entry.get("writable", False)),
                    )
                )

        instructions = tuple(
            ParsedInstruction.from_dict(ix) for ix in message.get("instructions", [])
        )

        return cls(
            signature=signature,
            slot=int(result.get("slot", 0)),
            block_time=result.get("blockTime"),
            account_keys=tuple(keys),
            instructions=instructions,
            err=meta.get("err"),
        )

    @property
    def fee_payer(self) -> str | None:
        """The first account key is always the fee-paying signer."""
        return self.account_keys[0].pubkey if self.account_keys else None

    @property
    def succeeded(self) -> bool:
        return self.err is None

    @property
    def signers(self) -> tuple[str, ...]:
        return tuple(k.pubkey for k in self.account_keys if k.signer)

    @property
    def block_datetime(self) -> datetime | None:
        if self.block_time is None:
            return None
        return datetime.fromtimestamp(self.block_time, tz=UTC)
