"""
Redis Storage Backend.

Production storage backend using Redis for persistence.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import redis

from sialedger.storage.base import (
    StorageBackend,
    matches_filters,
    paginate,
    register_storage_backend,
)

logger = logging.getLogger(__name__)


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Records are JSON strings written with ``SET NX`` so a key can only ever be
    inserted once. Each collection keeps a sorted-set index scored by an
    insertion counter, which gives queries a stable insertion order.

    Redis has no rollback, so ``transaction()`` compensates: keys inserted
    inside a failed block are deleted again before the error propagates.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "sialedger",
        client: redis.Redis | None = None,
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from SIALEDGER_REDIS_URL env)
            prefix: Key prefix for all storage keys
            client: Pre-built client, mainly for tests
        """
        self._redis_url = redis_url or os.environ.get(
            "SIALEDGER_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client = client
        self._inserted: list[tuple[str, str]] | None = None

    def _get_client(self) -> redis.Redis:
        """Lazy-connect the Redis client."""
        if self._client is None:
            self._client = redis.Redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        """Create Redis key from collection and key."""
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    def _seq_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_seq"

    def insert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> int:
        """Insert data with SET NX and add it to the collection index."""
        client = self._get_client()
        if not client.set(self._make_key(collection, key), json.dumps(data), nx=True):
            return 0

        seq = client.incr(self._seq_key(collection))
        client.zadd(self._index_key(collection), {key: seq})

        if self._inserted is not None:
            self._inserted.append((collection, key))
        return 1

    def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from Redis."""
        data = self._get_client().get(self._make_key(collection, key))
        if data is None:
            return None
        return json.loads(data)

    def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        client = self._get_client()
        keys = client.zrange(self._index_key(collection), 0, -1)

        results = []
        for key in keys:
            data = self.get(collection, key)
            if data is None:
                continue
            if not matches_filters(data, filters, match_any):
                continue

            data["_key"] = key
            results.append(data)

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
        return self._get_client().zcard(self._index_key(collection))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Track inserts and delete them again if the block raises."""
        if self._inserted is not None:
            yield
            return

        self._inserted = []
        try:
            yield
        except BaseException:
            inserted, self._inserted = self._inserted, None
            self._rollback(inserted)
            raise
        self._inserted = None

    def _rollback(self, inserted: list[tuple[str, str]]) -> None:
        client = self._get_client()
        for collection, key in reversed(inserted):
            client.delete(self._make_key(collection, key))
            client.zrem(self._index_key(collection), key)
            logger.warning(f"Rolled back insert of {collection}/{key}")

    def get_state(self, key: str) -> str | None:
        return self._get_client().get(f"{self._prefix}:state:{key}")

    def set_state(self, key: str, value: str) -> None:
        self._get_client().set(f"{self._prefix}:state:{key}", value)

    # Lua script for safe lock release: only delete if token matches
    _RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire a distributed lock with ownership token (Redis SET NX).

        Args:
            key: Lock key (e.g. "lock:scan")
            ttl: TTL in seconds

        Returns:
            Unique ownership token if acquired, None if already held
        """
        client = self._get_client()
        redis_key = f"{self._prefix}:locks:{key}"
        token = str(uuid.uuid4())

        if client.set(redis_key, token, nx=True, ex=ttl):
            return token
        return None

    def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """
        Release a lock safely using Lua script.

        Only deletes the key if the stored value matches our token,
        preventing accidental release of another caller's lock.
        """
        client = self._get_client()
        redis_key = f"{self._prefix}:locks:{key}"
        result = client.eval(self._RELEASE_LOCK_SCRIPT, 1, redis_key, token)
        return int(result) > 0

    # Only reset the expiry if the token still matches
    _EXTEND_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("pexpire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    def extend_lock(
        self,
        key: str,
        token: str,
        ttl: int,
    ) -> bool:
        client = self._get_client()
        redis_key = f"{self._prefix}:locks:{key}"
        result = client.eval(self._EXTEND_LOCK_SCRIPT, 1, redis_key, token, int(ttl * 1000))
        return int(result) > 0

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            return bool(self._get_client().ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            self._client.close()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
