"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Kora rent tracker, loading and validating environment variables at
startup. Configuration errors are raised before any chain I/O happens.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from solders.pubkey import Pubkey

if TYPE_CHECKING:
    from solders.keypair import Keypair

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

LAMPORTS_PER_SOL = 1_000_000_000


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


def _validate_pubkey(value: str, *, name: str) -> str:
    try:
        Pubkey.from_string(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a valid base58 Solana public key") from e
    return value


def _parse_address_list(v: object, *, name: str) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        parts = [p.strip() for p in v.split(",") if p.strip()]
    elif isinstance(v, (list, tuple, set, frozenset)):
        parts = [str(x).strip() for x in v if str(x).strip()]
    else:
        raise TypeError(f"Invalid {name} type")
    return tuple(_validate_pubkey(p, name=name) for p in parts)


class SolanaSettings(BaseSettings):
    """Solana RPC settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.devnet.solana.com",
        alias="SOLANA_RPC_URL",
        description="Primary Solana RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="SOLANA_FALLBACK_RPC_URL",
        description="Fallback Solana RPC endpoint",
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        alias="SOLANA_COMMITMENT",
        description="Commitment level for reads and confirmations",
    )
    max_requests_per_second: float = Field(
        default=10.0,
        alias="SOLANA_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Client-side rate limit for RPC calls",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="SOLANA_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="HTTP timeout for a single RPC call",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class OperatorSettings(BaseSettings):
    """Kora operator identity settings."""

    model_config = SettingsConfigDict(env_prefix="OPERATOR_", extra="ignore")

    name: str = Field(
        default="kora-operator",
        alias="OPERATOR_NAME",
        description="Human-readable operator name used in reports",
    )
    address: str | None = Field(
        default=None,
        alias="OPERATOR_ADDRESS",
        description="Operator (fee payer / sponsor) public key",
    )
    treasury_address: str | None = Field(
        default=None,
        alias="OPERATOR_TREASURY_ADDRESS",
        description="Treasury that receives reclaimed lamports (defaults to the operator)",
    )
    keypair_path: SecretStr | None = Field(
        default=None,
        alias="OPERATOR_KEYPAIR_PATH",
        description="Path to a JSON secret key array (required for live reclaim only)",
    )

    @field_validator("address", "treasury_address")
    @classmethod
    def validate_address(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return _validate_pubkey(v.strip(), name="Operator address")

    @property
    def effective_treasury(self) -> str | None:
        """Treasury address, falling back to the operator address."""
        return self.treasury_address or self.address


class RedisSettings(BaseSettings):
    """Redis connection settings (optional read cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; caching is disabled when unset",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        alias="REDIS_CACHE_TTL_SECONDS",
        ge=1,
        le=30 * 24 * 3600,
        description="TTL for cached immutable chain reads",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class RegistrySettings(BaseSettings):
    """Sponsorship registry storage settings."""

    model_config = SettingsConfigDict(env_prefix="REGISTRY_", extra="ignore")

    data_dir: Path = Field(
        default=Path("data"),
        alias="REGISTRY_DATA_DIR",
        description="Directory holding one registry file per operator",
    )
    lock_stale_seconds: float = Field(
        default=300.0,
        alias="REGISTRY_LOCK_STALE_SECONDS",
        ge=1.0,
        le=24 * 3600.0,
        description="Age after which a registry lock file is considered abandoned",
    )

    def registry_path(self, operator: str) -> Path:
        return self.data_dir / f"sponsorship-registry-{operator}.json"


class IngestSettings(BaseSettings):
    """Transaction history ingestion and refresh pacing."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    tx_limit: int = Field(
        default=1000,
        alias="INGEST_TX_LIMIT",
        ge=1,
        le=1_000_000,
        description="Maximum signatures to scan per ingestion run",
    )
    page_size: int = Field(
        default=1000,
        alias="INGEST_PAGE_SIZE",
        ge=1,
        le=1000,
        description="Signatures requested per getSignaturesForAddress call",
    )
    batch_size: int = Field(
        default=5,
        alias="INGEST_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Transactions fetched between pacing delays",
    )
    batch_delay_seconds: float = Field(
        default=0.3,
        alias="INGEST_BATCH_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pacing delay between transaction batches",
    )
    refresh_pace_every: int = Field(
        default=10,
        alias="INGEST_REFRESH_PACE_EVERY",
        ge=1,
        le=10_000,
        description="Accounts refreshed between pacing delays",
    )
    refresh_delay_seconds: float = Field(
        default=0.2,
        alias="INGEST_REFRESH_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Pacing delay during status refresh",
    )


class RetrySettings(BaseSettings):
    """Retry policy for transient chain I/O errors."""

    model_config = SettingsConfigDict(env_prefix="RETRY_", extra="ignore")

    max_retries: int = Field(
        default=3,
        alias="RETRY_MAX_RETRIES",
        ge=0,
        le=20,
        description="Retries after the first attempt",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        alias="RETRY_BASE_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Initial backoff delay (doubles each retry)",
    )


class SafetySettings(BaseSettings):
    """Safety validation rules applied before any reclaim."""

    model_config = SettingsConfigDict(env_prefix="SAFETY_", extra="ignore")

    min_inactive_days: float = Field(
        default=7.0,
        alias="SAFETY_MIN_INACTIVE_DAYS",
        ge=0.0,
        le=3650.0,
        description="Minimum account age (days) before it may be reclaimed",
    )
    recent_write_days: float = Field(
        default=3.0,
        alias="SAFETY_RECENT_WRITE_DAYS",
        ge=0.0,
        le=3650.0,
        description="Reject accounts with any signature inside this window (days)",
    )
    recent_write_signature_limit: int = Field(
        default=5,
        alias="SAFETY_RECENT_WRITE_SIGNATURE_LIMIT",
        ge=1,
        le=1000,
        description="How many recent signatures to inspect",
    )
    recent_write_fail_open: bool = Field(
        default=False,
        alias="SAFETY_RECENT_WRITE_FAIL_OPEN",
        description="Treat a failed recent-write lookup as 'no recent writes'",
    )
    deny_list: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="SAFETY_DENY_LIST",
        description="Addresses that must never be touched (comma-separated)",
    )
    allow_list: Annotated[tuple[str, ...] | None, NoDecode] = Field(
        default=None,
        alias="SAFETY_ALLOW_LIST",
        description="If set, only these addresses may be reclaimed (comma-separated)",
    )
    max_reclaim_per_account: int = Field(
        default=1 * LAMPORTS_PER_SOL,
        alias="SAFETY_MAX_RECLAIM_PER_ACCOUNT",
        ge=0,
        description="Maximum lamports a single account may hold to be reclaimed",
    )
    max_accounts_per_run: int = Field(
        default=50,
        alias="SAFETY_MAX_ACCOUNTS_PER_RUN",
        ge=1,
        le=10_000,
        description="Maximum candidates processed per reclaim run",
    )
    high_value_threshold: int = Field(
        default=LAMPORTS_PER_SOL // 10,
        alias="SAFETY_HIGH_VALUE_THRESHOLD",
        ge=0,
        description="Accepted accounts above this balance are tagged medium risk",
    )

    @field_validator("deny_list", mode="before")
    @classmethod
    def _parse_deny_list(cls, v: object) -> tuple[str, ...]:
        return _parse_address_list(v, name="SAFETY_DENY_LIST")

    @field_validator("allow_list", mode="before")
    @classmethod
    def _parse_allow_list(cls, v: object) -> tuple[str, ...] | None:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return _parse_address_list(v, name="SAFETY_ALLOW_LIST")


class ReclaimSettings(BaseSettings):
    """Reclaim execution settings."""

    model_config = SettingsConfigDict(env_prefix="RECLAIM_", extra="ignore")

    reports_dir: Path = Field(
        default=Path("data/reclaim-reports"),
        alias="RECLAIM_REPORTS_DIR",
        description="Directory for per-run reclaim reports",
    )
    dry_run: bool = Field(
        default=True,
        alias="RECLAIM_DRY_RUN",
        description="Default reclaim mode when the caller does not choose",
    )
    confirm_timeout_seconds: float = Field(
        default=60.0,
        alias="RECLAIM_CONFIRM_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="How long to wait for a reclaim transaction to confirm",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from kora_rent_tracker.config import get_settings

        settings = get_settings()
        settings.validate_requirements(command="ingest")
        print(settings.operator.address)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    operator: OperatorSettings = Field(
        default_factory=lambda: OperatorSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    registry: RegistrySettings = Field(
        default_factory=lambda: RegistrySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingest: IngestSettings = Field(
        default_factory=lambda: IngestSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    safety: SafetySettings = Field(
        default_factory=lambda: SafetySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    reclaim: ReclaimSettings = Field(
        default_factory=lambda: ReclaimSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "solana": {
                "rpc_url": self._redact_url(self.solana.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.solana.fallback_rpc_url)
                    if self.solana.fallback_rpc_url
                    else "(not set)"
                ),
                "commitment": self.solana.commitment,
            },
            "operator": {
                "name": self.operator.name,
                "address": self.operator.address or "(not set)",
                "treasury": self.operator.effective_treasury or "(not set)",
                "keypair_path": "(set)" if self.operator.keypair_path else "(not set)",
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "registry_dir": str(self.registry.data_dir),
            "reports_dir": str(self.reclaim.reports_dir),
            "safety": {
                "min_inactive_days": str(self.safety.min_inactive_days),
                "recent_write_days": str(self.safety.recent_write_days),
                "recent_write_fail_open": str(self.safety.recent_write_fail_open),
                "deny_list": str(len(self.safety.deny_list)),
                "allow_list": (
                    str(len(self.safety.allow_list)) if self.safety.allow_list is not None else "(not set)"
                ),
                "max_reclaim_per_account": str(self.safety.max_reclaim_per_account),
                "max_accounts_per_run": str(self.safety.max_accounts_per_run),
            },
            "log_level": self.log_level,
            "dry_run": str(self.reclaim.dry_run),
        }

    def validate_requirements(
        self,
        *,
        command: Literal["ingest", "refresh", "status", "reclaim", "reclaim-live"],
    ) -> None:
        """Validate command-specific requirements.

        Raises ConfigurationError before any chain I/O when a capability the
        command needs is not configured.
        """
        if not self.operator.address:
            raise ConfigurationError("OPERATOR_ADDRESS is required")

        if command in ("reclaim", "reclaim-live") and not self.operator.effective_treasury:
            raise ConfigurationError("OPERATOR_TREASURY_ADDRESS is required for reclaim")

        if command == "reclaim-live":
            if not self.operator.keypair_path:
                raise ConfigurationError("OPERATOR_KEYPAIR_PATH is required for live reclaim")
            # Fail on unreadable key material now rather than mid-batch.
            load_keypair(Path(self.operator.keypair_path.get_secret_value()))

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password or API key from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        if "api-key=" in url:
            return url.split("api-key=")[0] + "api-key=***"
        return url


def load_keypair(path: Path) -> Keypair:
    """Load a Solana keypair from a JSON secret key array file.

    Raises:
        ConfigurationError: If the file is missing or does not hold a valid key.
    """
    from solders.keypair import Keypair

    if not path.exists():
        raise ConfigurationError(f"Keypair file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return Keypair.from_bytes(bytes(raw))
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid key material in {path}: {e}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
