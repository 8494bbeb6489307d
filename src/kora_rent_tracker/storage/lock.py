"""Advisory single-writer lock file with staleness timeout."""

from __future__ import annotations

import logging
import os
import time
import uuid
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)

DEFAULT_STALE_SECONDS = 300.0


class RegistryError(Exception):
    """Base exception for registry storage errors."""


class LockError(RegistryError):
    """Raised when another process holds the registry lock."""


class RegistryLock:
    """Exclusive lock file next to the registry.

    The lock file holds ``<pid>:<token>`` for the owning run. A lock whose
    mtime is older than ``stale_seconds`` is treated as abandoned and taken
    over, so long runs call ``touch()`` to keep it fresh. A run only ever
    removes a lock file that still carries its own token.

    Example:
        ```python
        with RegistryLock(Path("data/registry.json.lock")) as lock:
            for batch in batches:
                ...  # mutate
                lock.touch()
        ```
    """

    def __init__(self, path: Path, *, stale_seconds: float = DEFAULT_STALE_SECONDS) -> None:
        self._path = path
        self._stale_seconds = stale_seconds
        self._held = False
        self._token: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            LockError: If a fresh lock is held by another run.
        """
        if self._held:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(2):
            try:
                fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if not self._is_stale():
                    raise LockError(
                        f"Another run is in progress (lock {self._path})"
                    ) from None
                logger.warning("Removing stale registry lock %s", self._path)
                self._path.unlink(missing_ok=True)
                continue

            token = f"{os.getpid()}:{uuid.uuid4().hex}"
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(token)
            self._token = token
            self._held = True
            return

        raise LockError(f"Another run is in progress (lock {self._path})")

    def owns(self) -> bool:
        """Whether the lock file on disk still carries this run's token."""
        if self._token is None:
            return False
        try:
            return self._path.read_text(encoding="utf-8") == self._token
        except FileNotFoundError:
            return False

    def touch(self) -> None:
        """Renew the lock's mtime after checking it is still ours.

        Raises:
            LockError: If the lock is not held or was taken over as stale.
        """
        if not self._held or not self.owns():
            raise LockError(f"Registry lock {self._path} is no longer held by this run")
        os.utime(self._path)

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        if not self.owns():
            logger.warning(
                "Registry lock %s was taken over by another run; leaving it in place",
                self._path,
            )
        else:
            self._path.unlink(missing_ok=True)
        self._token = None

    def _is_stale(self) -> bool:
        try:
            age = time.time() - self._path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age > self._stale_seconds

    def __enter__(self) -> RegistryLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
