"""
Append-only ledger of expected and observed fund movements.

Entries are written once through the StorageBackend and never updated or
deleted. Balances are derived by summing entries, never stored.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from sialedger.core.exceptions import (
    DuplicateEntryError,
    LedgerError,
    LedgerWriteError,
    ValidationError,
)
from sialedger.core.types import is_valid_address

if TYPE_CHECKING:
    from sialedger.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class LedgerEntryKind(str, Enum):
    """Types of ledger entries."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    RECEIVABLE = "receivable"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    """
    A single ledger entry.

    The ``kind`` decides which optional fields must be present:

    ============  =============  ====================  ==============  ==========  ==========
    kind          local_address  counterparty_address  transaction_id  amount      expires_at
    ============  =============  ====================  ==============  ==========  ==========
    receivable    required       absent                absent          negative    required
    deposit       required       optional              required        positive    absent
    withdrawal    absent         required              required        positive    absent
    ============  =============  ====================  ==============  ==========  ==========

    Attributes:
        kind: Entry discriminant
        block_height: Consensus height when the entry was recorded
        amount: Signed amount in hastings
        local_address: Wallet-owned address
        counterparty_address: External address
        transaction_id: On-chain transaction backing the entry
        expires_at: When an unpaid receivable lapses (timezone-aware)
        id: Storage key; derived from the transaction for deposits and withdrawals
        created_at: When the entry object was created
    """

    kind: LedgerEntryKind
    block_height: int
    amount: int
    local_address: str | None = None
    counterparty_address: str | None = None
    transaction_id: str | None = None
    expires_at: datetime | None = None
    id: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        try:
            kind = LedgerEntryKind(self.kind)
        except ValueError:
            raise ValidationError(f"Unknown ledger entry kind: {self.kind!r}") from None
        object.__setattr__(self, "kind", kind)

        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValidationError(
                "Ledger amounts must be integer hastings", details={"amount": repr(self.amount)}
            )
        if isinstance(self.block_height, bool) or not isinstance(self.block_height, int):
            raise ValidationError("block_height must be an integer")
        if self.block_height < 0:
            raise ValidationError("block_height must be non-negative")

        self._validate_fields(kind)

        if not self.id:
            if kind == LedgerEntryKind.RECEIVABLE:
                entry_id = str(uuid.uuid4())
            else:
                entry_id = self.key_for(kind, self.transaction_id)  # type: ignore[arg-type]
            object.__setattr__(self, "id", entry_id)

    def _validate_fields(self, kind: LedgerEntryKind) -> None:
        def reject(reason: str) -> None:
            raise ValidationError(f"Invalid {kind.value} entry: {reason}")

        if kind == LedgerEntryKind.RECEIVABLE:
            if not is_valid_address(self.local_address):
                reject("local_address must be a Sia address")
            if self.counterparty_address is not None:
                reject("counterparty_address must be absent")
            if self.transaction_id is not None:
                reject("transaction_id must be absent")
            if self.amount >= 0:
                reject("amount owed must be stored as a negative number")
            if self.expires_at is None or self.expires_at.tzinfo is None:
                reject("expires_at must be a timezone-aware datetime")
            return

        if not self.transaction_id:
            reject("transaction_id is required")
        if self.amount <= 0:
            reject("amount must be positive")
        if self.expires_at is not None:
            reject("expires_at must be absent")

        if kind == LedgerEntryKind.DEPOSIT:
            if not is_valid_address(self.local_address):
                reject("local_address must be a Sia address")
            if self.counterparty_address is not None and not is_valid_address(
                self.counterparty_address
            ):
                reject("counterparty_address must be a Sia address")
        else:
            if self.local_address is not None:
                reject("local_address must be absent")
            if not is_valid_address(self.counterparty_address):
                reject("counterparty_address must be a Sia address")

    @staticmethod
    def key_for(kind: LedgerEntryKind, transaction_id: str) -> str:
        """Storage key of the deposit or withdrawal for a transaction."""
        return f"{kind.value}:{transaction_id}"

    @classmethod
    def receivable(
        cls,
        amount_owed: int,
        local_address: str,
        expires_at: datetime,
        block_height: int,
    ) -> LedgerEntry:
        """Create a receivable; ``amount_owed`` is positive and stored negated."""
        return cls(
            kind=LedgerEntryKind.RECEIVABLE,
            block_height=block_height,
            amount=-amount_owed,
            local_address=local_address,
            expires_at=expires_at,
        )

    @classmethod
    def deposit(
        cls,
        amount: int,
        local_address: str,
        transaction_id: str,
        block_height: int,
        counterparty_address: str | None = None,
    ) -> LedgerEntry:
        return cls(
            kind=LedgerEntryKind.DEPOSIT,
            block_height=block_height,
            amount=amount,
            local_address=local_address,
            counterparty_address=counterparty_address,
            transaction_id=transaction_id,
        )

    @classmethod
    def withdrawal(
        cls,
        amount: int,
        counterparty_address: str,
        transaction_id: str,
        block_height: int,
    ) -> LedgerEntry:
        return cls(
            kind=LedgerEntryKind.WITHDRAWAL,
            block_height=block_height,
            amount=amount,
            counterparty_address=counterparty_address,
            transaction_id=transaction_id,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether a receivable has lapsed. Other kinds never expire."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "local_address": self.local_address,
            "counterparty_address": self.counterparty_address,
            "transaction_id": self.transaction_id,
            # String keeps arbitrary precision through JSON and SQL
            "amount": str(self.amount),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "block_height": self.block_height,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerEntry:
        """Create LedgerEntry from dictionary."""
        expires_at = data.get("expires_at")
        created_at = data.get("created_at")

        return cls(
            id=data.get("id") or data.get("_key", ""),
            kind=LedgerEntryKind(data["kind"]),
            block_height=int(data["block_height"]),
            amount=int(data["amount"]),
            local_address=data.get("local_address"),
            counterparty_address=data.get("counterparty_address"),
            transaction_id=data.get("transaction_id"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            created_at=datetime.fromisoformat(created_at) if created_at else _utcnow(),
        )


class Ledger:
    """
    Append-only ledger using StorageBackend.

    Offers insert and lookup only; recorded entries cannot be changed or removed.
    """

    COLLECTION = "ledger_entries"
    WATERMARK_KEY = "scan_watermark"

    def __init__(self, storage: StorageBackend) -> None:
        """
        Initialize ledger with storage backend.

        Args:
            storage: The storage backend (InMemory, Redis, SQL)
        """
        self._storage = storage

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    def record(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Append an entry inside a storage transaction.

        The transaction commits only if exactly one row was inserted.

        Raises:
            DuplicateEntryError: An entry with the same id already exists
            LedgerWriteError: The insert failed and was rolled back
        """
        try:
            with self._storage.transaction():
                affected = self._storage.insert(self.COLLECTION, entry.id, entry.to_dict())
                if affected == 0:
                    raise DuplicateEntryError(
                        f"Ledger entry {entry.id} already exists", entry_id=entry.id
                    )
                if affected != 1:
                    raise LedgerWriteError(
                        f"Insert of {entry.id} affected {affected} rows",
                        details={"entry_id": entry.id, "affected": affected},
                    )
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerWriteError(
                f"Failed to insert ledger entry {entry.id}: {e}",
                details={"entry_id": entry.id, "kind": entry.kind.value},
            ) from e

        logger.debug(f"Recorded {entry.kind.value} {entry.id} ({entry.amount} H)")
        return entry

    def get(self, entry_id: str) -> LedgerEntry | None:
        """
        Get entry by ID.

        Returns:
            LedgerEntry or None if not found
        """
        data = self._storage.get(self.COLLECTION, entry_id)
        if not data:
            return None
        return LedgerEntry.from_dict(data)

    def query(
        self,
        kind: LedgerEntryKind | None = None,
        local_address: str | None = None,
        counterparty_address: str | None = None,
        transaction_id: str | None = None,
        block_height: int | None = None,
        match_any: bool = False,
        limit: int | None = None,
    ) -> list[LedgerEntry]:
        """
        Query ledger entries by exact field match.

        Args:
            kind: Filter by kind
            local_address: Filter by wallet-owned address
            counterparty_address: Filter by external address
            transaction_id: Filter by transaction
            block_height: Filter by recorded height
            match_any: Return entries matching any given filter instead of all
            limit: Maximum entries to return

        Returns:
            Matching entries in insertion order
        """
        filters: dict[str, Any] = {}
        if kind is not None:
            filters["kind"] = LedgerEntryKind(kind).value
        if local_address is not None:
            filters["local_address"] = local_address
        if counterparty_address is not None:
            filters["counterparty_address"] = counterparty_address
        if transaction_id is not None:
            filters["transaction_id"] = transaction_id
        if block_height is not None:
            filters["block_height"] = block_height

        raw_results = self._storage.query(
            self.COLLECTION, filters=filters, match_any=match_any, limit=limit
        )
        return [LedgerEntry.from_dict(d) for d in raw_results]

    def is_registered(self, transaction_id: str) -> bool:
        """Whether any entry is backed by the transaction."""
        return self._storage.count(self.COLLECTION, {"transaction_id": transaction_id}) > 0

    def receivables(self, local_address: str) -> list[LedgerEntry]:
        """All receivables ever bound to an address, expired ones included."""
        return self.query(kind=LedgerEntryKind.RECEIVABLE, local_address=local_address)

    def balance(self, local_address: str) -> int:
        """
        Running balance of an address in hastings.

        Receivables count negative and deposits positive, so zero or more
        means everything owed at the address has been paid.
        """
        return sum(e.amount for e in self.query(local_address=local_address))

    def watermark(self) -> int | None:
        """Top height of the last reconciliation run that completed."""
        value = self._storage.get_state(self.WATERMARK_KEY)
        return int(value) if value is not None else None

    def set_watermark(self, height: int) -> None:
        self._storage.set_state(self.WATERMARK_KEY, str(height))
