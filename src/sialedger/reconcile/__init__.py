"""
Reconciliation - matching on-chain deposits to expected payments.

Scans confirmed wallet transactions and records deposits for receivables.
"""

from sialedger.reconcile.matcher import MatchOutcome, MatchResult, match_receivable
from sialedger.reconcile.net import net_amount
from sialedger.reconcile.scanner import AmbiguousMatch, ReconciliationScanner, ScanResult

__all__ = [
    "AmbiguousMatch",
    "MatchOutcome",
    "MatchResult",
    "ReconciliationScanner",
    "ScanResult",
    "match_receivable",
    "net_amount",
]
