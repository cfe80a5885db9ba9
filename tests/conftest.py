import logging
from datetime import datetime, timezone

import pytest

from sialedger.core.exceptions import NetworkError
from sialedger.core.logging import LOGGER_NAME
from sialedger.core.types import (
    Transaction,
    TransactionIds,
    TransactionInput,
    TransactionOutput,
)
from sialedger.ledger import Ledger
from sialedger.storage.memory import InMemoryStorage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

SC = 10**24


def make_address(n: int) -> str:
    """Deterministic 76-character hex address."""
    return f"{n:076x}"


ADDR_X = make_address(0xA1)
ADDR_Y = make_address(0xB2)
ADDR_Z = make_address(0xC3)
PAYER = make_address(0xF00D)


class FakeWallet:
    """In-memory stand-in for the Sia daemon wallet."""

    def __init__(self, height: int = 1000) -> None:
        self.height = height
        self.blocks: dict[int, list[str]] = {}
        self.transactions: dict[str, Transaction] = {}
        self.sent: list[tuple[int, str]] = []
        self.send_result = "txn-sent"
        self.send_error: Exception | None = None
        self.fail_at_height: int | None = None
        self.height_queries = 0

    def add_transaction(self, height: int, transaction: Transaction) -> Transaction:
        self.blocks.setdefault(height, []).append(transaction.transaction_id)
        self.transactions[transaction.transaction_id] = transaction
        return transaction

    def add_deposit(
        self,
        height: int,
        transaction_id: str,
        address: str,
        amount: int,
        counterparty: str | None = PAYER,
    ) -> Transaction:
        outputs = [TransactionOutput(wallet_owned=True, value=amount, related_address=address)]
        if counterparty is not None:
            # Change back to the payer
            outputs.append(
                TransactionOutput(wallet_owned=False, value=7, related_address=counterparty)
            )
        transaction = Transaction(
            transaction_id=transaction_id,
            inputs=(TransactionInput(wallet_owned=False, value=amount + 7),),
            outputs=tuple(outputs),
            confirmation_height=height,
        )
        return self.add_transaction(height, transaction)

    def add_spend(self, height: int, transaction_id: str, amount: int) -> Transaction:
        transaction = Transaction(
            transaction_id=transaction_id,
            inputs=(TransactionInput(wallet_owned=True, value=amount),),
            outputs=(TransactionOutput(wallet_owned=False, value=amount, related_address=PAYER),),
            confirmation_height=height,
        )
        return self.add_transaction(height, transaction)

    # WalletAdapter

    def consensus_height(self) -> int:
        self.height_queries += 1
        return self.height

    def wallet_transactions(self, start_height: int, end_height: int) -> TransactionIds:
        if self.fail_at_height is not None and start_height <= self.fail_at_height <= end_height:
            raise NetworkError("daemon unreachable", url="/wallet/transactions")
        confirmed = []
        for height in range(start_height, end_height + 1):
            confirmed.extend(self.blocks.get(height, []))
        return TransactionIds(confirmed=confirmed)

    def wallet_transaction(self, transaction_id: str) -> Transaction:
        return self.transactions[transaction_id]

    def send_siacoins(self, hastings: int, address: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((hastings, address))
        return self.send_result


@pytest.fixture(autouse=True)
def reset_sialedger_logger():
    """Undo configure_logging so caplog sees records."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def ledger(storage) -> Ledger:
    return Ledger(storage)
