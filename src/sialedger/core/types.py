"""
Type definitions for SiaLedger.

This module contains the daemon-facing data classes, unit conversions and the
wallet adapter protocol used throughout the library.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Any, Protocol, TypeAlias

from sialedger.core.exceptions import ValidationError

# Hastings per siacoin
HASTINGS_PER_SC = 10**24

# 32-byte unlock hash plus 6-byte checksum, hex encoded
ADDRESS_LENGTH = 76
_ADDRESS_RE = re.compile(r"^[0-9a-fA-F]{76}$")

# Type alias for flexible siacoin input
SiacoinAmount: TypeAlias = Decimal | int | str


def is_valid_address(address: Any) -> bool:
    """Check that a value is a well-formed Sia address."""
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def validate_address(address: Any, field_name: str = "address") -> str:
    """Return the address unchanged or raise ValidationError."""
    if not is_valid_address(address):
        raise ValidationError(
            f"Invalid Sia address for {field_name}",
            details={field_name: address, "expected": f"{ADDRESS_LENGTH} hex characters"},
        )
    return address


def validate_hastings(amount: Any, field_name: str = "amount") -> int:
    """
    Validate a positive amount of hastings.

    Hastings are whole integers; floats and booleans are refused.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(
            f"{field_name} must be an integer number of hastings",
            details={field_name: repr(amount)},
        )
    if amount <= 0:
        raise ValidationError(
            f"{field_name} must be positive",
            details={field_name: amount},
        )
    return amount


def siacoins_to_hastings(siacoins: SiacoinAmount) -> int:
    """
    Convert a siacoin amount to hastings.

    Raises:
        ValidationError: If the amount is not a whole number of hastings
    """
    if isinstance(siacoins, float):
        raise ValidationError(
            "Siacoin amounts must be Decimal, int or str, not float",
            details={"siacoins": repr(siacoins)},
        )
    with localcontext() as ctx:
        ctx.prec = 100
        try:
            value = Decimal(siacoins) * HASTINGS_PER_SC
        except ArithmeticError as e:
            raise ValidationError(
                f"Invalid siacoin amount: {siacoins!r}",
                details={"siacoins": repr(siacoins)},
            ) from e
        if not value.is_finite() or value != value.to_integral_value():
            raise ValidationError(
                "Siacoin amount is not a whole number of hastings",
                details={"siacoins": str(siacoins)},
            )
        return int(value)


def hastings_to_siacoins(hastings: int | str) -> Decimal:
    """Convert hastings to an exact Decimal siacoin amount."""
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(int(hastings)) / HASTINGS_PER_SC


def _parse_hastings(value: Any) -> int:
    # The daemon encodes currency values as JSON strings
    if value is None or value == "":
        return 0
    return int(str(value))


@dataclass(frozen=True)
class TransactionInput:
    """A transaction input as reported by the daemon wallet."""

    wallet_owned: bool = False
    value: int = 0
    related_address: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> TransactionInput:
        return cls(
            wallet_owned=bool(data.get("walletaddress", False)),
            value=_parse_hastings(data.get("value")),
            related_address=data.get("relatedaddress"),
        )


@dataclass(frozen=True)
class TransactionOutput:
    """A transaction output as reported by the daemon wallet."""

    wallet_owned: bool = False
    value: int = 0
    related_address: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> TransactionOutput:
        return cls(
            wallet_owned=bool(data.get("walletaddress", False)),
            value=_parse_hastings(data.get("value")),
            related_address=data.get("relatedaddress"),
        )


@dataclass(frozen=True)
class Transaction:
    """Wallet view of a single transaction."""

    transaction_id: str
    inputs: tuple[TransactionInput, ...] = ()
    outputs: tuple[TransactionOutput, ...] = ()
    confirmation_height: int | None = None
    confirmation_timestamp: datetime | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Transaction:
        """Create from a ``/wallet/transaction/:id`` ``transaction`` object."""
        timestamp = None
        raw_ts = data.get("confirmationtimestamp")
        if raw_ts:
            timestamp = datetime.fromtimestamp(int(raw_ts), tz=timezone.utc)

        height = data.get("confirmationheight")

        return cls(
            transaction_id=data.get("transactionid", ""),
            inputs=tuple(TransactionInput.from_api_response(i) for i in data.get("inputs") or []),
            outputs=tuple(
                TransactionOutput.from_api_response(o) for o in data.get("outputs") or []
            ),
            confirmation_height=int(height) if height is not None else None,
            confirmation_timestamp=timestamp,
        )


@dataclass(frozen=True)
class TransactionIds:
    """Transaction ids in a block range, split by confirmation state."""

    confirmed: list[str] = field(default_factory=list)
    unconfirmed: list[str] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> TransactionIds:
        """Create from a ``/wallet/transactions`` response (null lists are empty)."""
        return cls(
            confirmed=[
                t["transactionid"] for t in data.get("confirmedtransactions") or [] if t
            ],
            unconfirmed=[
                t["transactionid"] for t in data.get("unconfirmedtransactions") or [] if t
            ],
        )


@dataclass(frozen=True)
class AddressActivity:
    """Net movement of one confirmed transaction touching an address."""

    transaction_id: str
    hastings: int
    timestamp: datetime | None = None

    @property
    def siacoins(self) -> Decimal:
        return hastings_to_siacoins(self.hastings)


class WalletAdapter(Protocol):
    """
    The daemon operations the reconciliation core depends on.

    ``SiaClient`` is the production implementation; tests pass fakes.
    """

    def consensus_height(self) -> int: ...

    def wallet_transactions(self, start_height: int, end_height: int) -> TransactionIds: ...

    def wallet_transaction(self, transaction_id: str) -> Transaction: ...

    def send_siacoins(self, hastings: int, address: str) -> str: ...
