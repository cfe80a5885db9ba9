"""
Deposit-to-receivable matching.

A deposit matches a receivable when it was paid to the receivable's address
and the receivable has not expired. More than one candidate is reported as
ambiguous and never resolved by picking one.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sialedger.core.exceptions import AmbiguousMatchError
from sialedger.ledger.ledger import LedgerEntry, LedgerEntryKind


class MatchOutcome(str, Enum):
    """Result category of a match attempt."""

    NONE = "none"
    UNIQUE = "unique"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one deposit address."""

    outcome: MatchOutcome
    address: str | None
    candidates: tuple[LedgerEntry, ...] = ()

    @property
    def entry(self) -> LedgerEntry | None:
        """
        The matched receivable.

        Returns:
            The receivable, or None when nothing matched

        Raises:
            AmbiguousMatchError: If several receivables matched
        """
        if self.outcome == MatchOutcome.AMBIGUOUS:
            raise AmbiguousMatchError(
                f"{len(self.candidates)} live receivables bound to {self.address}",
                address=self.address or "",
                candidate_ids=[c.id for c in self.candidates],
            )
        if self.outcome == MatchOutcome.UNIQUE:
            return self.candidates[0]
        return None


def match_receivable(
    address: str | None,
    receivables: Iterable[LedgerEntry],
    now: datetime | None = None,
) -> MatchResult:
    """
    Resolve a deposit address against receivable entries.

    Args:
        address: Wallet-owned address the deposit was paid to
        receivables: Candidate entries; non-receivables are ignored
        now: Reference time for expiry (defaults to current UTC time)

    Returns:
        MatchResult with outcome NONE, UNIQUE or AMBIGUOUS
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if not address:
        return MatchResult(MatchOutcome.NONE, address)

    candidates = tuple(
        r
        for r in receivables
        if r.kind == LedgerEntryKind.RECEIVABLE
        and r.local_address == address
        and not r.is_expired(now)
    )

    if not candidates:
        return MatchResult(MatchOutcome.NONE, address)
    if len(candidates) == 1:
        return MatchResult(MatchOutcome.UNIQUE, address, candidates)
    return MatchResult(MatchOutcome.AMBIGUOUS, address, candidates)
