"""
Exception hierarchy for SiaLedger.

All library-specific exceptions inherit from SiaLedgerError for easy catching.
"""

from __future__ import annotations

from typing import Any


class SiaLedgerError(Exception):
    """
    Base exception for all SiaLedger errors.

    Catch this to handle any library-related exception.

    Example:
        >>> try:
        ...     ledger.reconcile()
        ... except SiaLedgerError as e:
        ...     print(f"Reconciliation failed: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SiaLedgerError, ValueError):
    """
    Configuration is missing or invalid.

    Raised when:
    - The daemon RPC address is malformed
    - An unknown storage backend is requested
    - A backend cannot be initialized
    """

    pass


class ValidationError(SiaLedgerError):
    """
    Input validation error.

    Raised before any daemon or store call when:
    - An amount is zero, negative or not a whole number of hastings
    - An address is not a well-formed Sia address
    - A ledger entry's fields contradict its kind
    """

    pass


class NetworkError(SiaLedgerError):
    """
    Daemon communication error.

    Raised when:
    - The HTTP request fails (timeout, connection refused)
    - The daemon returns a non-2xx status
    - The response body is not valid JSON or lacks required fields
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class WalletError(SiaLedgerError):
    """Wallet is in a state that prevents the operation."""

    pass


class WalletLockedError(WalletError):
    """The daemon wallet is locked; sends are refused until it is unlocked."""

    pass


class PaymentError(SiaLedgerError):
    """
    Base exception for outbound payment errors.

    Carries the destination address and the amount in hastings.
    """

    def __init__(
        self,
        message: str,
        address: str | None = None,
        amount: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.address = address
        self.amount = amount


class SendError(PaymentError):
    """
    The daemon refused a send.

    Raised when the send request never reached the daemon or the daemon
    answered with an error. No funds moved and nothing was recorded.
    """

    pass


class SendOutcomeUnknownError(PaymentError):
    """
    A send request reached the daemon but no usable answer came back.

    Raised on read timeouts, dropped connections and unreadable replies after
    the request was sent. The funds may have moved. Check the wallet history
    before sending again; nothing was recorded.
    """

    pass


class PostSendLedgerError(PaymentError):
    """
    Funds were sent but the withdrawal could not be recorded.

    The transfer is real and un-ledgered. It must be reconciled by hand using
    ``transaction_id``; retrying the withdrawal would send the funds twice.
    """

    def __init__(
        self,
        message: str,
        transaction_id: str,
        address: str | None = None,
        amount: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, address=address, amount=amount, details=details)
        self.transaction_id = transaction_id

    def __str__(self) -> str:
        return f"{self.message} (orphan transaction: {self.transaction_id})"


class LedgerError(SiaLedgerError):
    """Base exception for ledger store errors."""

    pass


class DuplicateEntryError(LedgerError):
    """
    An entry with the same key is already in the ledger.

    This is an expected condition during reconciliation, not a failure.
    """

    def __init__(
        self,
        message: str,
        entry_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.entry_id = entry_id


class LedgerWriteError(LedgerError):
    """
    Inserting a ledger entry failed and the write was rolled back.

    Raised when:
    - The storage backend raised during the insert
    - The insert affected a number of rows other than one
    """

    pass


class ReconciliationError(SiaLedgerError):
    """Base exception for reconciliation errors."""

    pass


class AmbiguousMatchError(ReconciliationError):
    """
    More than one live receivable is bound to a deposit address.

    The deposit is not recorded. Resolve the conflict manually.
    """

    def __init__(
        self,
        message: str,
        address: str,
        candidate_ids: list[str],
        transaction_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.address = address
        self.candidate_ids = candidate_ids
        self.transaction_id = transaction_id


class ScanInProgressError(ReconciliationError):
    """Another reconciliation run holds the scan lock."""

    pass
