"""
Scan Lock Service.

Serializes reconciliation runs. Matching a deposit and inserting it are two
separate store calls, so two scanners working the same ledger at once could
both decide a transaction is new. Holding this lock for the whole run keeps
a single active scanner per ledger.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sialedger.core.exceptions import ScanInProgressError

if TYPE_CHECKING:
    from sialedger.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class ScanLockService:
    """
    Advisory lock around reconciliation runs.

    Implements a distributed lock pattern using the storage backend.
    """

    LOCK_KEY = "lock:scan"

    def __init__(self, storage: StorageBackend, ttl: int = 300) -> None:
        """
        Initialize lock service.

        Args:
            storage: Storage backend (Redis/SQL/Memory)
            ttl: Lock time-to-live in seconds; bounds how long a crashed run blocks
                others. A live run renews it through keep_alive()
        """
        self._storage = storage
        self._ttl = ttl

    def acquire(
        self,
        retry_count: int = 0,
        retry_delay: float = 0.5,
    ) -> str | None:
        """
        Acquire the scan lock.

        Args:
            retry_count: Number of retries if lock is held
            retry_delay: Delay between retries

        Returns:
            lock_token (str) if successful, None if failed
        """
        for i in range(retry_count + 1):
            token = self._storage.acquire_lock(self.LOCK_KEY, self._ttl)
            if token:
                logger.debug(f"Acquired scan lock (token: {token[:8]}...)")
                return token

            if i < retry_count:
                logger.debug(f"Scan lock held, retrying in {retry_delay}s...")
                time.sleep(retry_delay)

        logger.warning(f"Failed to acquire scan lock after {retry_count} retries")
        return None

    def release(self, lock_token: str) -> bool:
        """
        Release a previously acquired lock.

        Returns:
            True if released, False if not found or token mismatch
        """
        result = self._storage.release_lock(self.LOCK_KEY, lock_token)
        if result:
            logger.debug("Released scan lock")
        else:
            logger.warning("Scan lock was already released or taken over")
        return result

    def keep_alive(self, lock_token: str) -> None:
        """
        Renew the lock for another TTL.

        Raises:
            ScanInProgressError: The lock expired and may now belong to another run
        """
        if not self._storage.extend_lock(self.LOCK_KEY, lock_token, self._ttl):
            logger.error("Scan lock expired during the run; aborting")
            raise ScanInProgressError(
                "Scan lock was lost; another reconciliation run may be active",
                details={"lock_key": self.LOCK_KEY, "ttl": self._ttl},
            )

    @contextmanager
    def hold(self, retry_count: int = 0, retry_delay: float = 0.5) -> Iterator[str]:
        """
        Hold the scan lock for the duration of the block.

        Raises:
            ScanInProgressError: If another run holds the lock
        """
        token = self.acquire(retry_count=retry_count, retry_delay=retry_delay)
        if token is None:
            raise ScanInProgressError(
                "Another reconciliation run is in progress",
                details={"lock_key": self.LOCK_KEY, "ttl": self._ttl},
            )
        try:
            yield token
        finally:
            self.release(token)
