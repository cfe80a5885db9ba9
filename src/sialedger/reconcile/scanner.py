"""
Reconciliation Scanner.

Walks the chain backwards from the current consensus height and records a
deposit for every new incoming transaction that pays a live receivable.

The walk stops at the configured floor height. In the default mode it also
stops at the first transaction that is already in the ledger, on the premise
that runs are frequent enough for everything older to be registered. The
premise fails when an earlier run died half way through a block range, so a
run that completes stores its starting height as a watermark: a registered
transaction above the watermark was left by an unfinished run and does not
end the scan.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sialedger.core.exceptions import (
    AmbiguousMatchError,
    ConfigurationError,
    DuplicateEntryError,
)
from sialedger.core.logging import get_logger
from sialedger.core.types import Transaction, WalletAdapter, is_valid_address
from sialedger.ledger.ledger import Ledger, LedgerEntry
from sialedger.reconcile.matcher import MatchOutcome, match_receivable
from sialedger.reconcile.net import net_amount


@dataclass(frozen=True)
class AmbiguousMatch:
    """A deposit that could not be attributed to a single receivable."""

    transaction_id: str
    address: str
    amount: int
    block_height: int
    candidate_ids: tuple[str, ...]


@dataclass
class ScanResult:
    """
    Outcome of one reconciliation run.

    Attributes:
        entries: Deposits recorded by this run, newest block first
        conflicts: Deposits left unrecorded because several receivables matched
        unmatched: Incoming transactions that matched no live receivable
        scanned_from: Consensus height the run started at
        scanned_to: Lowest height whose transactions were all visited
        terminated_early: Whether the run stopped at an already-registered transaction
    """

    entries: list[LedgerEntry] = field(default_factory=list)
    conflicts: list[AmbiguousMatch] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    scanned_from: int | None = None
    scanned_to: int | None = None
    terminated_early: bool = False

    def raise_for_conflicts(self) -> None:
        """
        Raise if the run left conflicts for manual resolution.

        Raises:
            AmbiguousMatchError: For the first recorded conflict
        """
        if not self.conflicts:
            return
        first = self.conflicts[0]
        raise AmbiguousMatchError(
            f"{len(self.conflicts)} deposit(s) matched several receivables",
            address=first.address,
            candidate_ids=list(first.candidate_ids),
            transaction_id=first.transaction_id,
            details={"transactions": [c.transaction_id for c in self.conflicts]},
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationScanner:
    """
    Discovers deposits by scanning blocks from the chain tip downwards.

    Not safe to run concurrently against the same ledger; callers serialize
    runs (see ScanLockService).
    """

    def __init__(
        self,
        wallet: WalletAdapter,
        ledger: Ledger,
        floor_height: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the scanner.

        Args:
            wallet: Daemon wallet adapter
            ledger: Ledger to read receivables from and record deposits in
            floor_height: Lowest block to visit
            clock: Source of the current time for receivable expiry
        """
        if floor_height < 0:
            raise ConfigurationError("floor_height must be non-negative")
        self._wallet = wallet
        self._ledger = ledger
        self._floor_height = floor_height
        self._clock = clock
        self._logger = get_logger("scanner")

    @property
    def floor_height(self) -> int:
        return self._floor_height

    def run(
        self,
        process_all: bool = False,
        checkpoint: Callable[[], None] | None = None,
    ) -> ScanResult:
        """
        Run one reconciliation pass.

        Args:
            process_all: Visit every block down to the floor instead of stopping
                at the first already-registered transaction
            checkpoint: Called before each block and before each deposit is
                recorded; raising from it aborts the run

        Returns:
            ScanResult with the deposits recorded by this run

        Raises:
            NetworkError: A daemon query failed; the run is aborted
            LedgerWriteError: A deposit could not be recorded; the run is aborted
            ScanInProgressError: The checkpoint found the scan lock lost
        """
        consensus_height = self._wallet.consensus_height()
        watermark = None if process_all else self._ledger.watermark()
        result = ScanResult(scanned_from=consensus_height)

        self._logger.info(
            f"Reconciling blocks {consensus_height} down to {self._floor_height} "
            f"(process_all={process_all}, watermark={watermark})"
        )

        for height in range(consensus_height, self._floor_height - 1, -1):
            if checkpoint is not None:
                checkpoint()
            transaction_ids = self._wallet.wallet_transactions(height, height)

            for transaction_id in transaction_ids.confirmed:
                stop = self._visit(
                    transaction_id,
                    height,
                    consensus_height,
                    process_all,
                    watermark,
                    result,
                    checkpoint,
                )
                if stop:
                    result.terminated_early = True
                    self._logger.info(
                        f"Reached registered transaction {transaction_id} at height {height}; "
                        f"recorded {len(result.entries)} deposit(s)"
                    )
                    self._ledger.set_watermark(consensus_height)
                    return result

            result.scanned_to = height

        self._ledger.set_watermark(consensus_height)
        self._logger.info(
            f"Reconciled down to height {result.scanned_to}; "
            f"recorded {len(result.entries)} deposit(s), "
            f"{len(result.conflicts)} conflict(s), {len(result.unmatched)} unmatched"
        )
        return result

    def _visit(
        self,
        transaction_id: str,
        height: int,
        consensus_height: int,
        process_all: bool,
        watermark: int | None,
        result: ScanResult,
        checkpoint: Callable[[], None] | None = None,
    ) -> bool:
        """Process one transaction. Returns True when the scan must stop."""
        transaction = self._wallet.wallet_transaction(transaction_id)

        # Withdrawals and pass-through activity
        net = net_amount(transaction)
        if net <= 0:
            return False

        if self._ledger.is_registered(transaction_id):
            if process_all:
                return False
            if watermark is not None and height > watermark:
                self._logger.warning(
                    f"Transaction {transaction_id} at height {height} is above the "
                    f"watermark {watermark}; continuing past it"
                )
                return False
            return True

        local_address, counterparty_address = self._addresses(transaction)
        if local_address is None:
            return False

        if self._ledger.balance(local_address) >= 0:
            receivables: list[LedgerEntry] = []
        else:
            receivables = self._ledger.receivables(local_address)

        match = match_receivable(local_address, receivables, now=self._clock())

        if match.outcome == MatchOutcome.AMBIGUOUS:
            conflict = AmbiguousMatch(
                transaction_id=transaction_id,
                address=local_address,
                amount=net,
                block_height=height,
                candidate_ids=tuple(c.id for c in match.candidates),
            )
            result.conflicts.append(conflict)
            self._logger.error(
                f"Deposit {transaction_id} of {net} H to {local_address} matches "
                f"{len(match.candidates)} receivables {list(conflict.candidate_ids)}; "
                "not recorded, resolve manually",
                extra={"transaction_id": transaction_id, "address": local_address, "amount": net},
            )
            return False

        if match.outcome == MatchOutcome.NONE:
            result.unmatched.append(transaction_id)
            self._logger.info(
                f"Deposit {transaction_id} of {net} H to {local_address} matches no receivable"
            )
            return False

        entry = LedgerEntry.deposit(
            amount=net,
            local_address=local_address,
            transaction_id=transaction_id,
            block_height=consensus_height,
            counterparty_address=counterparty_address,
        )
        if checkpoint is not None:
            checkpoint()
        try:
            self._ledger.record(entry)
        except DuplicateEntryError:
            self._logger.warning(f"Deposit {transaction_id} was recorded concurrently; skipped")
            return False

        result.entries.append(entry)
        self._logger.info(f"Recorded deposit {transaction_id} of {net} H to {local_address}")
        return False

    @staticmethod
    def _addresses(transaction: Transaction) -> tuple[str | None, str | None]:
        """
        Wallet-owned and foreign output addresses; the last of each wins.

        Outputs whose address is not a well-formed Sia address are skipped.
        """
        local_address = None
        counterparty_address = None
        for output in transaction.outputs:
            if not is_valid_address(output.related_address):
                continue
            if output.wallet_owned:
                local_address = output.related_address
            else:
                counterparty_address = output.related_address
        return local_address, counterparty_address
