"""Storage layer - Registry persistence and locking."""

from kora_rent_tracker.storage.lock import LockError, RegistryError, RegistryLock
from kora_rent_tracker.storage.registry import (
    PersistenceError,
    RegistryMetrics,
    RegistryStore,
    SponsorshipRegistry,
    UnknownAccountError,
)

__all__ = [
    "LockError",
    "PersistenceError",
    "RegistryError",
    "RegistryLock",
    "RegistryMetrics",
    "RegistryStore",
    "SponsorshipRegistry",
    "UnknownAccountError",
]
