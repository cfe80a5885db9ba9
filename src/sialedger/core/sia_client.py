"""
Sia daemon HTTP client.

This module provides a synchronous client for the wallet and consensus
endpoints of the Sia daemon (siad) API.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import httpx

from sialedger.core.config import Config
from sialedger.core.exceptions import (
    NetworkError,
    SendError,
    SendOutcomeUnknownError,
    WalletLockedError,
)
from sialedger.core.logging import get_logger
from sialedger.core.types import (
    AddressActivity,
    Transaction,
    TransactionIds,
    validate_address,
    validate_hastings,
)
from sialedger.reconcile.net import net_amount
from sialedger.resilience.retry import retry_policy

T = TypeVar("T")


class SiaClient:
    """
    Client for the Sia daemon API.

    Implements the WalletAdapter protocol used by the scanner and issuer,
    plus a few wallet status helpers.

    Example:
        >>> with SiaClient(Config.from_env()) as client:
        ...     height = client.consensus_height()
        ...     ids = client.wallet_transactions(height, height)
    """

    def __init__(self, config: Config, http_client: httpx.Client | None = None) -> None:
        """
        Initialize the daemon client.

        Args:
            config: Library configuration (daemon address, timeout, user agent)
            http_client: Preconfigured client, mainly for tests; the caller keeps
                ownership and must close it
        """
        self._config = config
        self._logger = get_logger("sia_client")
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.Client(
            base_url=config.base_url,
            timeout=config.request_timeout,
            # siad refuses API calls from other user agents
            headers={"User-Agent": config.user_agent},
        )

    def close(self) -> None:
        """Close HTTP client."""
        if self._owns_client:
            self._http_client.close()

    def __enter__(self) -> SiaClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        self._logger.debug(f"{method} {path}")
        try:
            response = self._http_client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(
                f"Sia daemon request failed: {e}",
                url=path,
                details={"method": method, "error": str(e)},
            ) from e

        if response.is_error:
            raise NetworkError(
                f"Sia daemon returned HTTP {response.status_code} for {method} {path}",
                status_code=response.status_code,
                url=path,
                details={"body": _error_message(response)},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(
                f"Sia daemon returned a non-JSON body for {method} {path}",
                status_code=response.status_code,
                url=path,
            ) from e

        if not isinstance(data, dict):
            raise NetworkError(
                f"Unexpected response shape for {method} {path}",
                status_code=response.status_code,
                url=path,
            )
        return data

    @retry_policy
    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make GET request to the daemon (retried on transient errors)."""
        return self._request("GET", path, params=params)

    def _post(self, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make POST request to the daemon. Never retried."""
        return self._request("POST", path, data=data)

    # ==================== Consensus ====================

    def consensus_height(self) -> int:
        """Current consensus block height."""
        data = self._get("/consensus")
        try:
            return int(data["height"])
        except (KeyError, TypeError, ValueError) as e:
            raise NetworkError("Consensus response has no height", url="/consensus") from e

    # ==================== Wallet ====================

    def wallet_transactions(self, start_height: int, end_height: int) -> TransactionIds:
        """
        Transaction ids related to the wallet in a block range.

        Args:
            start_height: First block of the range
            end_height: Last block of the range (inclusive)

        Returns:
            TransactionIds with confirmed and unconfirmed ids
        """
        path = "/wallet/transactions"
        data = self._get(path, params={"startheight": start_height, "endheight": end_height})
        return _parse(TransactionIds.from_api_response, data, path)

    def wallet_transaction(self, transaction_id: str) -> Transaction:
        """Wallet view of one transaction."""
        path = f"/wallet/transaction/{transaction_id}"
        data = self._get(path)
        transaction = data.get("transaction")
        if not isinstance(transaction, dict):
            raise NetworkError(
                f"Transaction {transaction_id} missing from daemon response",
                url=path,
            )
        return _parse(Transaction.from_api_response, transaction, path)

    def wallet_transactions_for_address(self, address: str) -> TransactionIds:
        """Transaction ids touching one wallet address."""
        address = validate_address(address)
        path = f"/wallet/transactions/{address}"
        return _parse(TransactionIds.from_api_response, self._get(path), path)

    def address_history(self, address: str) -> list[AddressActivity]:
        """
        Confirmed activity of one wallet address.

        Transactions that move nothing in or out of the wallet are skipped.

        Args:
            address: Wallet address

        Returns:
            One AddressActivity per confirmed transaction with a non-zero net
        """
        activity = []
        for transaction_id in self.wallet_transactions_for_address(address).confirmed:
            if not transaction_id:
                continue
            transaction = self.wallet_transaction(transaction_id)
            net = net_amount(transaction)
            if net == 0:
                continue
            activity.append(
                AddressActivity(
                    transaction_id=transaction_id,
                    hastings=net,
                    timestamp=transaction.confirmation_timestamp,
                )
            )
        return activity

    def wallet_is_locked(self) -> bool:
        data = self._get("/wallet")
        return not data.get("unlocked", False)

    def confirmed_balance(self) -> int:
        """Confirmed siacoin balance of the wallet in hastings."""
        data = self._get("/wallet")
        try:
            return int(data.get("confirmedsiacoinbalance") or 0)
        except (TypeError, ValueError) as e:
            raise NetworkError("Wallet response has an invalid balance", url="/wallet") from e

    def wallet_address(self) -> str:
        """Generate a new receive address in the wallet."""
        data = self._get("/wallet/address")
        address = data.get("address")
        if not address:
            raise NetworkError("Address response has no address", url="/wallet/address")
        return address

    def send_siacoins(self, hastings: int, address: str) -> str:
        """
        Send siacoins from the wallet.

        Args:
            hastings: Amount in hastings
            address: Destination address

        Returns:
            Id of the last transaction the daemon created for the send

        Raises:
            ValidationError: Invalid amount or address
            WalletLockedError: The wallet is locked
            SendError: The daemon refused the send or could not be reached
            SendOutcomeUnknownError: The request was sent but its outcome is unknown
        """
        hastings = validate_hastings(hastings)
        address = validate_address(address, "destination")

        if self.wallet_is_locked():
            raise WalletLockedError("Wallet is locked", details={"destination": address})

        try:
            data = self._post(
                "/wallet/siacoins",
                data={"amount": str(hastings), "destination": address},
            )
        except NetworkError as e:
            details = {"status_code": e.status_code, **e.details}
            if _send_refused(e):
                raise SendError(
                    f"Failed to send {hastings} H to {address}: {e.message}",
                    address=address,
                    amount=hastings,
                    details=details,
                ) from e
            raise SendOutcomeUnknownError(
                f"Send of {hastings} H to {address} may have gone through: {e.message}",
                address=address,
                amount=hastings,
                details=details,
            ) from e

        transaction_ids = data.get("transactionids") or []
        if not transaction_ids:
            raise SendOutcomeUnknownError(
                "Daemon accepted the send but reported no transaction ids",
                address=address,
                amount=hastings,
            )
        return transaction_ids[-1]


def _send_refused(error: NetworkError) -> bool:
    """Whether a failed send is known not to have reached the daemon wallet."""
    if error.status_code is not None and error.status_code >= 400:
        return True
    # Raised before any bytes reach the daemon
    return isinstance(
        error.__cause__, (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
    )


def _error_message(response: httpx.Response) -> str:
    # siad reports errors as {"message": "..."}
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "message" in body:
        return str(body["message"])
    return response.text


def _parse(
    from_api_response: Callable[[dict[str, Any]], T], data: dict[str, Any], path: str
) -> T:
    try:
        return from_api_response(data)
    except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
        raise NetworkError(
            f"Malformed daemon response for {path}: {e!r}",
            url=path,
            details={"error": str(e)},
        ) from e
