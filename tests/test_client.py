"""Tests for the SiaLedger facade."""

from unittest.mock import MagicMock

import pytest

from sialedger import SiaLedger
from sialedger.core.config import Config
from sialedger.core.exceptions import NetworkError, ScanInProgressError
from sialedger.core.sia_client import SiaClient
from sialedger.ledger import LedgerEntry, LedgerEntryKind, ScanLockService
from sialedger.storage import InMemoryStorage, SQLStorage

from conftest import ADDR_X, ADDR_Y, PAYER, SC, FakeWallet


@pytest.fixture
def sia(wallet, storage, clock):
    with SiaLedger(config=Config(floor_height=900), wallet=wallet, storage=storage, clock=clock) as s:
        yield s


class TestSiaLedger:
    def test_payment_flow(self, wallet, sia):
        receivable = sia.register_receivable(25 * SC, ADDR_X)
        assert sia.balance(ADDR_X) == -25 * SC

        wallet.add_deposit(990, "tx-990", ADDR_X, 25 * SC)
        wallet.height = 1001
        result = sia.reconcile()

        assert [e.transaction_id for e in result.entries] == ["tx-990"]
        assert sia.balance(ADDR_X) == 0
        assert sia.ledger.get(receivable.id) == receivable

    def test_withdrawal(self, wallet, sia):
        wallet.send_result = "abc"

        sia.issue_withdrawal(10, PAYER)

        (entry,) = sia.entries(kind=LedgerEntryKind.WITHDRAWAL)
        assert entry.transaction_id == "abc"
        assert sia.entries(counterparty_address=PAYER) == [entry]

    def test_entries_match_any(self, sia):
        sia.register_receivable(5, ADDR_X)
        sia.register_receivable(6, ADDR_Y)

        assert len(sia.entries(local_address=ADDR_X)) == 1
        assert len(sia.entries(local_address=ADDR_X, kind="receivable", match_any=True)) == 2

    def test_reconcile_defaults_to_configured_mode(self, wallet, storage, clock):
        sia = SiaLedger(
            config=Config(floor_height=900, process_all=True),
            wallet=wallet,
            storage=storage,
            clock=clock,
        )
        sia.register_receivable(5, ADDR_X)
        sia.register_receivable(6, ADDR_Y)
        sia.ledger.record(
            LedgerEntry.deposit(amount=6, local_address=ADDR_Y, transaction_id="tx-980", block_height=1000)
        )
        wallet.add_deposit(980, "tx-980", ADDR_Y, 6)
        wallet.add_deposit(950, "tx-950", ADDR_X, 5)

        assert [e.transaction_id for e in sia.reconcile().entries] == ["tx-950"]
        assert sia.reconcile(process_all=False).terminated_early

    def test_reconcile_refuses_concurrent_run(self, storage, sia):
        other = ScanLockService(storage)
        token = other.acquire()

        with pytest.raises(ScanInProgressError):
            sia.reconcile()

        other.release(token)
        sia.reconcile()

    def test_lock_released_after_failed_run(self, wallet, storage, sia):
        wallet.fail_at_height = 1000
        with pytest.raises(NetworkError):
            sia.reconcile()

        wallet.fail_at_height = None
        assert ScanLockService(storage).acquire() is not None

    def test_properties(self, wallet, storage, sia):
        assert sia.wallet is wallet
        assert sia.storage is storage
        assert sia.config.floor_height == 900


class SlowWallet(FakeWallet):
    """Runs a callback while a block is being fetched."""

    def __init__(self, on_block):
        super().__init__()
        self.on_block = on_block

    def wallet_transactions(self, start_height, end_height):
        self.on_block(start_height)
        return super().wallet_transactions(start_height, end_height)


class TestScanLockRenewal:
    @pytest.fixture
    def now(self, monkeypatch):
        now = [1_000_000.0]
        monkeypatch.setattr("sialedger.storage.memory.time.time", lambda: now[0])
        return now

    def test_scan_longer_than_lock_ttl_keeps_the_lock(self, storage, clock, now):
        config = Config(floor_height=990, scan_lock_ttl=60)
        outcomes = []

        def slow_block(height):
            now[0] += 40
            if height == 992:
                other = SiaLedger(config=config, wallet=FakeWallet(), storage=storage, clock=clock)
                try:
                    other.reconcile()
                    outcomes.append("ran")
                except ScanInProgressError:
                    outcomes.append("refused")

        sia = SiaLedger(config=config, wallet=SlowWallet(slow_block), storage=storage, clock=clock)
        result = sia.reconcile()

        assert outcomes == ["refused"]
        assert result.scanned_to == 990

    def test_run_that_lost_its_lock_stops_writing(self, storage, clock, now):
        config = Config(floor_height=990, scan_lock_ttl=60)
        outcomes = []

        def stalled_block(height):
            if height == 999:
                now[0] += 61
                other = SiaLedger(config=config, wallet=FakeWallet(), storage=storage, clock=clock)
                other.reconcile()
                outcomes.append("ran")

        wallet = SlowWallet(stalled_block)
        sia = SiaLedger(config=config, wallet=wallet, storage=storage, clock=clock)
        sia.register_receivable(5, ADDR_X)
        wallet.add_deposit(995, "tx-995", ADDR_X, 5)

        with pytest.raises(ScanInProgressError, match="lost"):
            sia.reconcile()

        assert outcomes == ["ran"]
        assert not sia.ledger.is_registered("tx-995")


class TestConstruction:
    def test_storage_built_from_config(self, wallet, tmp_path):
        config = Config(storage_backend="sql", database_url=f"sqlite:///{tmp_path / 'l.db'}")

        with SiaLedger(config=config, wallet=wallet) as sia:
            assert isinstance(sia.storage, SQLStorage)

    def test_default_wallet_is_daemon_client(self):
        with SiaLedger(config=Config(), storage=InMemoryStorage()) as sia:
            assert isinstance(sia.wallet, SiaClient)

    def test_close_leaves_injected_storage_open(self, wallet):
        storage = MagicMock(spec=InMemoryStorage)

        SiaLedger(config=Config(), wallet=wallet, storage=storage).close()

        storage.close.assert_not_called()

    def test_close_releases_owned_storage(self, wallet, monkeypatch):
        closed = []
        monkeypatch.setattr(InMemoryStorage, "close", lambda self: closed.append(self))

        sia = SiaLedger(config=Config(), wallet=wallet)
        sia.close()

        assert closed == [sia.storage]
