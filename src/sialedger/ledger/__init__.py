"""
Ledger module - append-only accounting for SiaLedger.

Provides the ledger over the unified StorageBackend, the issuer that creates
receivables and withdrawals, and the lock that serializes scanner runs.
"""

from sialedger.ledger.issuer import LedgerIssuer
from sialedger.ledger.ledger import (
    Ledger,
    LedgerEntry,
    LedgerEntryKind,
)
from sialedger.ledger.lock import ScanLockService

__all__ = [
    "Ledger",
    "LedgerEntry",
    "LedgerEntryKind",
    "LedgerIssuer",
    "ScanLockService",
]
