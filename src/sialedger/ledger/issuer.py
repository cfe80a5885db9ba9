"""
Receivable and withdrawal issuance.

Creates the ledger entries that the application originates: receivables for
payments it expects, and withdrawals for funds it sends out.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sialedger.core.exceptions import (
    PostSendLedgerError,
    SendError,
    SendOutcomeUnknownError,
    SiaLedgerError,
    ValidationError,
)
from sialedger.core.logging import get_logger
from sialedger.core.types import WalletAdapter, validate_address, validate_hastings
from sialedger.ledger.ledger import Ledger, LedgerEntry


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerIssuer:
    """
    Issues receivables and withdrawals.

    Validation happens before any daemon or store call. A withdrawal sends
    first and records second; if recording fails after the send went through,
    the orphan transaction id is logged and raised as PostSendLedgerError.
    """

    def __init__(
        self,
        wallet: WalletAdapter,
        ledger: Ledger,
        default_ttl: timedelta = timedelta(days=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._wallet = wallet
        self._ledger = ledger
        self._default_ttl = default_ttl
        self._clock = clock
        self._logger = get_logger("issuer")

    def _resolve_expiry(self, expires_at: datetime | timedelta | None) -> datetime:
        now = self._clock()
        if expires_at is None:
            return now + self._default_ttl
        if isinstance(expires_at, timedelta):
            if expires_at <= timedelta(0):
                raise ValidationError("Receivable lifetime must be positive")
            return now + expires_at
        if expires_at.tzinfo is None:
            raise ValidationError(
                "expires_at must be timezone-aware",
                details={"expires_at": expires_at.isoformat()},
            )
        if expires_at <= now:
            raise ValidationError(
                "expires_at is in the past",
                details={"expires_at": expires_at.isoformat()},
            )
        return expires_at

    def register_receivable(
        self,
        amount: int,
        local_address: str,
        expires_at: datetime | timedelta | None = None,
    ) -> LedgerEntry:
        """
        Register a payment the application expects to receive.

        Args:
            amount: Amount owed in hastings (positive)
            local_address: Wallet address the payer sends to
            expires_at: Expiry time, lifetime from now, or None for the default lifetime

        Returns:
            The recorded receivable (its amount is the negated amount owed)

        Raises:
            ValidationError: Invalid amount, address or expiry
            NetworkError: The consensus height could not be read
            LedgerWriteError: The receivable could not be recorded
        """
        amount = validate_hastings(amount)
        local_address = validate_address(local_address, "local_address")
        expiry = self._resolve_expiry(expires_at)

        now = self._clock()
        live = [r for r in self._ledger.receivables(local_address) if not r.is_expired(now)]
        if live:
            self._logger.warning(
                f"Address {local_address} already has {len(live)} live receivable(s); "
                "deposits to it will be reported as ambiguous"
            )

        entry = LedgerEntry.receivable(
            amount_owed=amount,
            local_address=local_address,
            expires_at=expiry,
            block_height=self._wallet.consensus_height(),
        )
        self._ledger.record(entry)
        self._logger.info(
            f"Registered receivable {entry.id} for {amount} H at {local_address} "
            f"(expires {expiry.isoformat()})"
        )
        return entry

    def issue_withdrawal(self, amount: int, counterparty_address: str) -> LedgerEntry:
        """
        Send funds and record the withdrawal.

        Args:
            amount: Amount to send in hastings (positive)
            counterparty_address: Destination address

        Returns:
            The recorded withdrawal

        Raises:
            ValidationError: Invalid amount or address; nothing was sent
            SendError: The send failed; nothing was sent or recorded
            SendOutcomeUnknownError: The send may have gone through; nothing was recorded
            PostSendLedgerError: The send succeeded but the withdrawal was not recorded
        """
        amount = validate_hastings(amount)
        counterparty_address = validate_address(counterparty_address, "counterparty_address")

        try:
            transaction_id = self._wallet.send_siacoins(amount, counterparty_address)
        except SendOutcomeUnknownError as e:
            self._logger.critical(
                f"Send of {amount} H to {counterparty_address} may have gone through: {e}. "
                "Check the wallet history before retrying.",
                extra={"address": counterparty_address, "amount": amount},
            )
            raise
        except SendError:
            raise
        except SiaLedgerError as e:
            raise SendError(
                f"Failed to send {amount} H to {counterparty_address}: {e}",
                address=counterparty_address,
                amount=amount,
                details={"error": str(e)},
            ) from e

        try:
            entry = LedgerEntry.withdrawal(
                amount=amount,
                counterparty_address=counterparty_address,
                transaction_id=transaction_id,
                block_height=self._wallet.consensus_height(),
            )
            self._ledger.record(entry)
        except Exception as e:
            self._logger.critical(
                f"Sent {amount} H to {counterparty_address} in transaction {transaction_id} "
                f"but failed to record the withdrawal: {e}. Reconcile manually; do not retry.",
                extra={
                    "transaction_id": transaction_id,
                    "address": counterparty_address,
                    "amount": amount,
                },
            )
            raise PostSendLedgerError(
                "Withdrawal sent but not recorded in the ledger",
                transaction_id=transaction_id,
                address=counterparty_address,
                amount=amount,
                details={"error": str(e)},
            ) from e

        self._logger.info(
            f"Recorded withdrawal {transaction_id} of {amount} H to {counterparty_address}"
        )
        return entry
