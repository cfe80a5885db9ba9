"""
SQL Storage Backend.

Relational backend built on SQLAlchemy Core. Works with any database
SQLAlchemy can reach (SQLite for single-host deployments, MySQL/PostgreSQL
for shared ones). The ledger collection maps onto a typed table whose columns
mirror the ledger entry fields.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sialedger.core.exceptions import ConfigurationError
from sialedger.storage.base import StorageBackend, register_storage_backend

metadata = MetaData()

ledger_entries = Table(
    "ledger_entries",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("seq", Integer, nullable=False, index=True),
    Column("kind", String(16), nullable=False, index=True),
    Column("local_address", String(76), index=True),
    Column("counterparty_address", String(76)),
    Column("transaction_id", String(128), index=True),
    # Hastings exceed every native integer column type, so keep the digits
    Column("amount", String(96), nullable=False),
    Column("expires_at", String(40)),
    Column("block_height", Integer, nullable=False),
    Column("created_at", String(40), nullable=False),
)

state = Table(
    "sialedger_state",
    metadata,
    Column("key", String(128), primary_key=True),
    Column("value", String(256), nullable=False),
)

locks = Table(
    "sialedger_locks",
    metadata,
    Column("key", String(128), primary_key=True),
    Column("token", String(64), nullable=False),
    Column("expires_at", Float, nullable=False),
)

COLLECTIONS: dict[str, Table] = {
    "ledger_entries": ledger_entries,
}


class SQLStorage(StorageBackend):
    """
    SQLAlchemy storage backend.

    Every insert runs in a database transaction; ``transaction()`` widens that
    transaction to the whole block so the caller can verify the affected row
    count before commit.
    """

    def __init__(
        self,
        database_url: str | None = None,
        engine: Engine | None = None,
    ) -> None:
        """
        Initialize SQL storage and create missing tables.

        Args:
            database_url: SQLAlchemy URL (or from SIALEDGER_DATABASE_URL env)
            engine: Pre-built engine, mainly for tests
        """
        self._database_url = database_url or os.environ.get(
            "SIALEDGER_DATABASE_URL",
            "sqlite:///sialedger.db",
        )
        self._engine = engine or create_engine(self._database_url)
        self._conn: Connection | None = None
        metadata.create_all(self._engine)

    def _table(self, collection: str) -> Table:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ConfigurationError(
                f"SQL backend has no table for collection '{collection}'",
                details={"available": list(COLLECTIONS)},
            ) from None

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        """Use the open transaction if there is one, otherwise a new one."""
        if self._conn is not None:
            yield self._conn
            return
        with self._engine.begin() as conn:
            yield conn

    @staticmethod
    def _to_dict(row: Any) -> dict[str, Any]:
        data = dict(row._mapping)
        data.pop("seq", None)
        data["_key"] = data["id"]
        return data

    def _where(self, table: Table, filters: dict[str, Any] | None, match_any: bool):
        if not filters:
            return None
        clauses = [table.c[name] == value for name, value in filters.items()]
        return or_(*clauses) if match_any else and_(*clauses)

    def insert(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> int:
        """Insert a row; a primary key collision inserts nothing."""
        table = self._table(collection)
        row = {name: value for name, value in data.items() if name in table.c}
        row["id"] = key

        with self._connection() as conn:
            exists = conn.execute(select(table.c.id).where(table.c.id == key)).first()
            if exists is not None:
                return 0
            seq = conn.execute(select(func.coalesce(func.max(table.c.seq), 0))).scalar_one()
            row["seq"] = seq + 1
            try:
                result = conn.execute(insert(table).values(**row))
            except IntegrityError:
                return 0
            return result.rowcount

    def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        table = self._table(collection)
        with self._connection() as conn:
            row = conn.execute(select(table).where(table.c.id == key)).first()
        return self._to_dict(row) if row is not None else None

    def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        table = self._table(collection)
        stmt = select(table).order_by(table.c.seq)
        where = self._where(table, filters, match_any)
        if where is not None:
            stmt = stmt.where(where)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._connection() as conn:
            rows = conn.execute(stmt).all()
        return [self._to_dict(row) for row in rows]

    def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        match_any: bool = False,
    ) -> int:
        table = self._table(collection)
        stmt = select(func.count()).select_from(table)
        where = self._where(table, filters, match_any)
        if where is not None:
            stmt = stmt.where(where)
        with self._connection() as conn:
            return conn.execute(stmt).scalar_one()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Begin; commit on normal exit, roll back if the block raises."""
        if self._conn is not None:
            yield
            return

        with self._engine.begin() as conn:
            self._conn = conn
            try:
                yield
            finally:
                self._conn = None

    def get_state(self, key: str) -> str | None:
        with self._connection() as conn:
            return conn.execute(select(state.c.value).where(state.c.key == key)).scalar()

    def set_state(self, key: str, value: str) -> None:
        with self._connection() as conn:
            result = conn.execute(update(state).where(state.c.key == key).values(value=value))
            if result.rowcount == 0:
                conn.execute(insert(state).values(key=key, value=value))

    def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """Acquire a lock row; expired rows are cleared first."""
        token = str(uuid.uuid4())
        now = time.time()
        try:
            with self._engine.begin() as conn:
                conn.execute(delete(locks).where(and_(locks.c.key == key, locks.c.expires_at <= now)))
                conn.execute(insert(locks).values(key=key, token=token, expires_at=now + ttl))
        except IntegrityError:
            return None
        return token

    def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                delete(locks).where(and_(locks.c.key == key, locks.c.token == token))
            )
        return result.rowcount > 0

    def extend_lock(
        self,
        key: str,
        token: str,
        ttl: int,
    ) -> bool:
        now = time.time()
        with self._engine.begin() as conn:
            result = conn.execute(
                update(locks)
                .where(and_(locks.c.key == key, locks.c.token == token, locks.c.expires_at > now))
                .values(expires_at=now + ttl)
            )
        return result.rowcount > 0

    def health_check(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self._engine.dispose()


# Register backend
register_storage_backend("sql", SQLStorage)
