"""Solana RPC gateway with rate limiting, failover and caching.

This module provides a thin accessor over a Solana node with:
- Rate limiting to respect provider limits
- Failover to a secondary RPC URL for reads
- Redis caching for immutable reads (parsed transactions, rent minimums)
- Typed errors so callers can retry transient failures

Retries are deliberately left to callers (see ``chain.retry``).
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from redis.asyncio import Redis
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import (
    RPCException,
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import CloseAccountParams, close_account

from kora_rent_tracker.chain.models import AccountSnapshot, ParsedTx, SignatureRef

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 10
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONFIRM_TIMEOUT = 60.0
MAX_SIGNATURES_PER_PAGE = 1000

HTTP_TOO_MANY_REQUESTS = 429

_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    SolanaRpcException,
    RPCException,
    httpx.HTTPError,
    asyncio.TimeoutError,
)

# Raised by confirm_transaction when the blockhash expires or the node never
# reports the signature.
_CONFIRM_ERRORS: tuple[type[Exception], ...] = (
    TransactionExpiredBlockheightExceededError,
    UnconfirmedTxError,
)


class GatewayError(Exception):
    """Base exception for gateway errors."""


class RPCError(GatewayError):
    """Raised when an RPC call fails or returns a malformed response."""


class RateLimitError(GatewayError):
    """Raised when the node rejects a call for exceeding its rate limit."""


def _http_status(error: BaseException) -> int | None:
    """Find an HTTP status code on the error or its cause chain."""
    seen: BaseException | None = error
    while seen is not None:
        if isinstance(seen, httpx.HTTPStatusError):
            return seen.response.status_code
        seen = seen.__cause__ or seen.__context__
    return None


def _to_gateway_error(method: str, error: Exception) -> GatewayError:
    if _http_status(error) == HTTP_TOO_MANY_REQUESTS:
        return RateLimitError(f"Rate limited on {method}: {error}")
    return RPCError(f"RPC call {method} failed: {error}")


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class SolanaGateway:
    """Read accessor (plus reclaim write paths) over a Solana RPC node.

    Example:
        ```python
        gateway = SolanaGateway(
            rpc_url="https://api.mainnet-beta.solana.com",
            fallback_rpc_url="https://solana-rpc.publicnode.com",
        )
        snapshot = await gateway.get_account("...")
        history = await gateway.get_signature_history("...", limit=100)
        await gateway.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        commitment: str = "confirmed",
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        confirm_timeout_seconds: float = DEFAULT_CONFIRM_TIMEOUT,
        client: AsyncClient | None = None,
        fallback_client: AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            rpc_url: Primary Solana RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for read failover.
            commitment: Commitment level for reads and confirmations.
            redis: Optional Redis client for caching immutable reads.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls.
            request_timeout_seconds: HTTP timeout per call.
            confirm_timeout_seconds: Max wait for a sent transaction to confirm.
            client: Pre-built primary client (tests).
            fallback_client: Pre-built fallback client (tests).
        """
        self._rpc_url = rpc_url
        self._commitment = Commitment(commitment)
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._confirm_timeout = confirm_timeout_seconds

        self._client = client or AsyncClient(
            rpc_url, commitment=self._commitment, timeout=request_timeout_seconds
        )
        self._fallback: AsyncClient | None = fallback_client
        if self._fallback is None and fallback_rpc_url:
            self._fallback = AsyncClient(
                fallback_rpc_url, commitment=self._commitment, timeout=request_timeout_seconds
            )

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "solana:"

    @classmethod
    def from_settings(cls, settings: Any, *, redis: Redis | None = None) -> "SolanaGateway":
        """Build a gateway from the root ``Settings`` object."""
        return cls(
            settings.solana.rpc_url,
            fallback_rpc_url=settings.solana.fallback_rpc_url,
            commitment=settings.solana.commitment,
            redis=redis,
            cache_ttl_seconds=settings.redis.cache_ttl_seconds,
            max_requests_per_second=settings.solana.max_requests_per_second,
            request_timeout_seconds=settings.solana.request_timeout_seconds,
            confirm_timeout_seconds=settings.reclaim.confirm_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _cache_key(self, key_type: str, key: str) -> str:
        return f"{self._cache_prefix}{key_type}:{key}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    # ------------------------------------------------------------------
    # Call dispatch
    # ------------------------------------------------------------------

    def _should_try_primary(self) -> bool:
        if self._primary_healthy or self._fallback is None:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Run one read RPC, failing over to the fallback node once.

        Raises:
            RateLimitError: If the node answered 429.
            RPCError: For any other transport or RPC failure.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None
        if self._should_try_primary():
            try:
                result = await getattr(self._client, method)(*args, **kwargs)
                self._primary_healthy = True
                return result
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("Primary RPC %s failed: %s", method, e)
                if self._fallback is not None:
                    self._primary_healthy = False
                    self._last_primary_check = time.monotonic()

        if self._fallback is not None:
            try:
                result = await getattr(self._fallback, method)(*args, **kwargs)
                logger.info("Fallback RPC succeeded for %s", method)
                return result
            except _TRANSPORT_ERRORS as e:
                last_error = e
                logger.warning("Fallback RPC %s failed: %s", method, e)

        assert last_error is not None
        raise _to_gateway_error(method, last_error) from last_error

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account(self, address: str) -> AccountSnapshot | None:
        """Fetch account state, or None if the account does not exist."""
        resp = await self._call(
            "get_account_info", Pubkey.from_string(address), encoding="base64"
        )
        if resp.value is None:
            return None
        return AccountSnapshot.from_account(address, resp.value)

    async def get_balance(self, address: str) -> int:
        """Fetch an address's lamport balance (zero if it does not exist)."""
        resp = await self._call("get_balance", Pubkey.from_string(address))
        return int(resp.value)

    async def get_min_rent_exempt_balance(self, data_size: int) -> int:
        """Minimum lamports for an account of ``data_size`` bytes to be rent exempt."""
        if data_size < 0:
            raise ValueError("data_size must be >= 0")

        cache_key = self._cache_key("rent", str(data_size))
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        resp = await self._call("get_minimum_balance_for_rent_exemption", data_size)
        lamports = int(resp.value)
        await self._set_cached(cache_key, str(lamports))
        return lamports

    async def get_signature_history(
        self,
        address: str,
        *,
        limit: int = MAX_SIGNATURES_PER_PAGE,
        before: str | None = None,
        until: str | None = None,
    ) -> list[SignatureRef]:
        """Fetch signatures touching ``address``, newest first.

        Args:
            address: Account whose history to read.
            limit: Page size (at most 1000).
            before: Start searching backwards from this signature.
            until: Stop when this signature is reached (exclusive).
        """
        resp = await self._call(
            "get_signatures_for_address",
            Pubkey.from_string(address),
            before=Signature.from_string(before) if before else None,
            until=Signature.from_string(until) if until else None,
            limit=min(limit, MAX_SIGNATURES_PER_PAGE),
        )
        return [SignatureRef.from_rpc(status) for status in resp.value or []]

    async def get_parsed_transaction(self, signature: str) -> ParsedTx | None:
        """Fetch a jsonParsed transaction body, or None if unknown to the node."""
        cache_key = self._cache_key("tx", signature)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return ParsedTx.from_rpc(signature, json.loads(cached))

        resp = await self._call(
            "get_transaction",
            Signature.from_string(signature),
            encoding="jsonParsed",
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            return None

        try:
            result = json.loads(resp.to_json())["result"]
        except (ValueError, KeyError) as e:
            raise RPCError(f"Malformed transaction response for {signature}: {e}") from e
        if result is None:
            return None

        # Confirmed transactions are immutable, safe to cache.
        await self._set_cached(cache_key, json.dumps(result))
        return ParsedTx.from_rpc(signature, result)

    async def health_check(self) -> bool:
        """Check node connectivity."""
        try:
            await self._call("get_slot")
            return True
        except GatewayError as e:
            logger.error("Health check failed: %s", e)
            return False

    # ------------------------------------------------------------------
    # Writes (reclaim only, primary node, never retried here)
    # ------------------------------------------------------------------

    async def send_close_token_account(
        self,
        account: str,
        *,
        destination: str,
        owner: Keypair,
        program_id: str,
    ) -> str:
        """Close a token account owned by ``owner``, sending its lamports to ``destination``."""
        ix = close_account(
            CloseAccountParams(
                program_id=Pubkey.from_string(program_id),
                account=Pubkey.from_string(account),
                dest=Pubkey.from_string(destination),
                owner=owner.pubkey(),
                signers=[],
            )
        )
        return await self._send_and_confirm(ix, owner)

    async def send_transfer(self, source: Keypair, *, destination: str, lamports: int) -> str:
        """Transfer ``lamports`` from ``source`` to ``destination``."""
        if lamports <= 0:
            raise ValueError("lamports must be > 0")
        ix = transfer(
            TransferParams(
                from_pubkey=source.pubkey(),
                to_pubkey=Pubkey.from_string(destination),
                lamports=lamports,
            )
        )
        return await self._send_and_confirm(ix, source)

    async def _send_and_confirm(self, ix: Instruction, payer: Keypair) -> str:
        await self._rate_limiter.acquire()
        try:
            blockhash_resp = await self._client.get_latest_blockhash(self._commitment)
            msg = MessageV0.try_compile(
                payer.pubkey(), [ix], [], blockhash_resp.value.blockhash
            )
            tx = VersionedTransaction(msg, [payer])
            resp = await self._client.send_transaction(
                tx,
                opts=TxOpts(skip_preflight=False, preflight_commitment=self._commitment),
            )
            signature = resp.value
            confirmation = await asyncio.wait_for(
                self._client.confirm_transaction(
                    signature,
                    self._commitment,
                    last_valid_block_height=blockhash_resp.value.last_valid_block_height,
                ),
                timeout=self._confirm_timeout,
            )
        except _TRANSPORT_ERRORS as e:
            raise _to_gateway_error("send_transaction", e) from e
        except _CONFIRM_ERRORS as e:
            raise RPCError(f"Transaction was not confirmed: {e}") from e

        statuses = confirmation.value or []
        if statuses and statuses[0] is not None and statuses[0].err is not None:
            raise RPCError(f"Transaction {signature} failed on chain: {statuses[0].err}")

        logger.info("Confirmed transaction %s", signature)
        return str(signature)

    async def aclose(self) -> None:
        """Close underlying HTTP clients."""
        await self._client.close()
        if self._fallback is not None:
            await self._fallback.close()
