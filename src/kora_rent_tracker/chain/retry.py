"""Bounded exponential-backoff retry for chain calls.

The gateway surfaces RPC failures verbatim; callers wrap the calls they
want retried in a ``RetryPolicy``.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

from kora_rent_tracker.chain.client import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0

P = ParamSpec("P")
T = TypeVar("T")


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an awaitable on transient gateway errors.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: Initial delay in seconds, doubled after every failure.
        retry_on: Exception types considered transient.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    retry_on: tuple[type[Exception], ...] = field(default=(GatewayError,))

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Await ``func(*args, **kwargs)``, retrying on transient failures.

        Raises:
            RetryError: If every attempt failed.
        """
        last_exception: Exception | None = None
        name = getattr(func, "__name__", repr(func))

        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                last_exception = e
                if attempt == self.max_retries:
                    break

                delay = self.base_delay * (2**attempt)
                logger.warning(
                    "Attempt %d/%d of %s failed: %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self.max_retries + 1,
                    name,
                    str(e),
                    delay,
                )
                await asyncio.sleep(delay)

        raise RetryError(
            f"All {self.max_retries + 1} attempts failed for {name}",
            last_exception=last_exception,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        """Build from a ``RetrySettings`` group."""
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_seconds,
        )
