"""Chain layer - Solana RPC access, retry policy and rent figures."""

from kora_rent_tracker.chain.client import (
    GatewayError,
    RateLimiter,
    RateLimitError,
    RPCError,
    SolanaGateway,
)
from kora_rent_tracker.chain.models import (
    AccountKey,
    AccountSnapshot,
    ParsedInstruction,
    ParsedTx,
    SignatureRef,
)
from kora_rent_tracker.chain.rent import RentCalculator, RentStatus, RentSummary
from kora_rent_tracker.chain.retry import RetryError, RetryPolicy

__all__ = [
    "AccountKey",
    "AccountSnapshot",
    "GatewayError",
    "ParsedInstruction",
    "ParsedTx",
    "RPCError",
    "RateLimitError",
    "RateLimiter",
    "RentCalculator",
    "RentStatus",
    "RentSummary",
    "RetryError",
    "RetryPolicy",
    "SignatureRef",
    "SolanaGateway",
]
