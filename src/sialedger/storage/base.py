"""
Abstract Storage Backend for SiaLedger.

Provides the persistence contract used by the ledger, the scan watermark and
the scan lock. Ledger rows are insert-only: the contract has no update or
delete for collection records.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Implementations guarantee an atomic single-record insert and a scoped
    transaction; they do not offer compare-and-insert across several calls.
    """

    @abstractmethod
    def insert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> int:
        """
        Insert a record unless the key already exists.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)

        Returns:
            Number of records inserted (1, or 0 if the key exists)
        """
        ...

    @abstractmethod
    def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get a record by key.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query records by exact field match.

        Args:
            collection: Collection/table name
            filters: Field/value pairs to match exactly
            match_any: Match records satisfying any filter instead of all
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            Matching records in insertion order, each with a ``_key`` field
        """
        ...

    @abstractmethod
    def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
    ) -> int:
        """Count records matching the filters."""
        ...

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """
        Scope inserts in a transaction.

        Inserts made inside the block become visible on normal exit and are
        discarded if the block raises; the exception is re-raised.
        """
        ...

    @abstractmethod
    def get_state(self, key: str) -> str | None:
        """Read a mutable bookkeeping value (not a ledger record)."""
        ...

    @abstractmethod
    def set_state(self, key: str, value: str) -> None:
        """Write a mutable bookkeeping value (not a ledger record)."""
        ...

    @abstractmethod
    def acquire_lock(self, key: str, ttl: int = 30) -> str | None:
        """
        Acquire an advisory lock.

        Returns:
            Ownership token if acquired, None if held by someone else
        """
        ...

    @abstractmethod
    def release_lock(self, key: str, token: str) -> bool:
        """Release a lock if ``token`` still owns it."""
        ...

    @abstractmethod
    def extend_lock(self, key: str, token: str, ttl: int) -> bool:
        """
        Reset the TTL of a lock ``token`` still owns.

        Returns:
            False if the lock expired or now belongs to someone else
        """
        ...

    def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    def close(self) -> None:
        """Release connections held by the backend."""
        return None


def matches_filters(
    data: dict[str, Any],
    filters: dict[str, Any] | None,
    match_any: bool = False,
) -> bool:
    """Exact-match a record against a conjunction or disjunction of filters."""
    if not filters:
        return True
    hits = (data.get(field) == value for field, value in filters.items())
    return any(hits) if match_any else all(hits)


def paginate(results: list[Any], limit: int | None, offset: int) -> list[Any]:
    results = results[offset:]
    if limit is not None:
        results = results[:limit]
    return results


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())


