"""
SiaLedger - An append-only payment ledger for the Sia wallet daemon

Tracks payments an application expects, discovers the deposits that pay them
by scanning the chain, and records outgoing withdrawals, without trusting the
daemon's transaction log as the source of truth.

Usage:
    >>> from sialedger import SiaLedger, siacoins_to_hastings
    >>>
    >>> sia = SiaLedger()
    >>> address = sia.wallet.wallet_address()
    >>> sia.register_receivable(siacoins_to_hastings("25"), address)
    >>>
    >>> # Later, e.g. from a cron job
    >>> result = sia.reconcile()
    >>> sia.balance(address)
"""

from sialedger.client import SiaLedger
from sialedger.core.config import Config
from sialedger.core.exceptions import (
    AmbiguousMatchError,
    ConfigurationError,
    DuplicateEntryError,
    LedgerError,
    LedgerWriteError,
    NetworkError,
    PaymentError,
    PostSendLedgerError,
    ReconciliationError,
    ScanInProgressError,
    SendError,
    SendOutcomeUnknownError,
    SiaLedgerError,
    ValidationError,
    WalletError,
    WalletLockedError,
)
from sialedger.core.sia_client import SiaClient
from sialedger.core.types import (
    HASTINGS_PER_SC,
    AddressActivity,
    Transaction,
    TransactionIds,
    WalletAdapter,
    hastings_to_siacoins,
    is_valid_address,
    siacoins_to_hastings,
)
from sialedger.ledger import Ledger, LedgerEntry, LedgerEntryKind, LedgerIssuer, ScanLockService
from sialedger.reconcile import (
    AmbiguousMatch,
    MatchOutcome,
    MatchResult,
    ReconciliationScanner,
    ScanResult,
    match_receivable,
    net_amount,
)

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "SiaLedger",
    "SiaClient",
    # Config
    "Config",
    # Types
    "HASTINGS_PER_SC",
    "AddressActivity",
    "Transaction",
    "TransactionIds",
    "WalletAdapter",
    "hastings_to_siacoins",
    "siacoins_to_hastings",
    "is_valid_address",
    # Ledger
    "Ledger",
    "LedgerEntry",
    "LedgerEntryKind",
    "LedgerIssuer",
    "ScanLockService",
    # Reconciliation
    "AmbiguousMatch",
    "MatchOutcome",
    "MatchResult",
    "ReconciliationScanner",
    "ScanResult",
    "match_receivable",
    "net_amount",
    # Exceptions
    "SiaLedgerError",
    "ConfigurationError",
    "ValidationError",
    "NetworkError",
    "WalletError",
    "WalletLockedError",
    "PaymentError",
    "SendError",
    "SendOutcomeUnknownError",
    "PostSendLedgerError",
    "LedgerError",
    "DuplicateEntryError",
    "LedgerWriteError",
    "ReconciliationError",
    "AmbiguousMatchError",
    "ScanInProgressError",
]
