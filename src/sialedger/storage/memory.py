"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development and testing, but not for production.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from copy import deepcopy
from typing import Any

from sialedger.storage.base import (
    StorageBackend,
    matches_filters,
    paginate,
    register_storage_backend,
)


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Data is lost when process ends.
    Inserts made inside ``transaction()`` are staged and only applied on commit.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._state: dict[str, str] = {}
        self._locks: dict[str, tuple[str, float]] = {}
        self._staged: list[tuple[str, str, dict[str, Any]]] | None = None
        self._mutex = threading.RLock()

    def _ensure_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    def _is_staged(self, collection: str, key: str) -> bool:
        return any(c == collection and k == key for c, k, _ in self._staged or ())

    def insert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> int:
        """Insert data unless the key exists (committed or staged)."""
        with self._mutex:
            coll = self._ensure_collection(collection)
            if key in coll or self._is_staged(collection, key):
                return 0
            if self._staged is not None:
                self._staged.append((collection, key, deepcopy(data)))
            else:
                coll[key] = deepcopy(data)
            return 1

    def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from memory."""
        coll = self._ensure_collection(collection)
        data = coll.get(key)
        return deepcopy(data) if data else None

    def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        coll = self._ensure_collection(collection)

        results = []
        for key, data in coll.items():
            if not matches_filters(data, filters, match_any):
                continue

            result = deepcopy(data)
            result["_key"] = key
            results.append(result)

        return paginate(results, limit, offset)

    def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
    ) -> int:
        """Count records in collection."""
        if filters:
            return len(self.query(collection, filters, match_any))
        return len(self._ensure_collection(collection))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Stage inserts and apply them only if the block completes."""
        with self._mutex:
            if self._staged is not None:
                # Nested blocks join the outer transaction
                yield
                return

            self._staged = []
            try:
                yield
            except BaseException:
                self._staged = None
                raise

            staged, self._staged = self._staged, None
            for collection, key, data in staged:
                self._ensure_collection(collection)[key] = data

    def get_state(self, key: str) -> str | None:
        return self._state.get(key)

    def set_state(self, key: str, value: str) -> None:
        self._state[key] = value

    def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """Acquire lock (simple in-memory implementation)."""
        with self._mutex:
            now = time.time()

            held = self._locks.get(key)
            if held is not None and now < held[1]:
                return None

            token = str(uuid.uuid4())
            self._locks[key] = (token, now + ttl)
            return token

    def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """Release lock if the token still owns it."""
        with self._mutex:
            held = self._locks.get(key)
            if held is None or held[0] != token:
                return False
            del self._locks[key]
            return True

    def extend_lock(
        self,
        key: str,
        token: str,
        ttl: int,
    ) -> bool:
        with self._mutex:
            now = time.time()
            held = self._locks.get(key)
            if held is None or held[0] != token or now >= held[1]:
                return False
            self._locks[key] = (token, now + ttl)
            return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
