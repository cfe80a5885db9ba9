"""Tests for the reconciliation scanner."""

import logging
from datetime import timedelta

import pytest

from sialedger.core.exceptions import (
    AmbiguousMatchError,
    ConfigurationError,
    LedgerWriteError,
    NetworkError,
)
from sialedger.ledger import Ledger, LedgerEntry, LedgerEntryKind
from sialedger.reconcile.scanner import ReconciliationScanner
from sialedger.storage.memory import InMemoryStorage

from conftest import ADDR_X, ADDR_Y, ADDR_Z, NOW, PAYER


def expect(ledger, address, amount, expires_in=timedelta(days=1)):
    """Record a receivable directly in the ledger."""
    entry = LedgerEntry.receivable(
        amount_owed=amount,
        local_address=address,
        expires_at=NOW + expires_in,
        block_height=800,
    )
    ledger.record(entry)
    return entry


def paid(ledger, address, amount, transaction_id, block_height=1000):
    """Record a deposit as an earlier run would have."""
    entry = LedgerEntry.deposit(
        amount=amount,
        local_address=address,
        transaction_id=transaction_id,
        block_height=block_height,
    )
    ledger.record(entry)
    return entry


@pytest.fixture
def scanner(wallet, ledger, clock):
    return ReconciliationScanner(wallet, ledger, floor_height=900, clock=clock)


class TestScanner:
    def test_deposit_matching_receivable_is_recorded(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        result = scanner.run()

        assert len(result.entries) == 1
        deposit = result.entries[0]
        assert deposit.kind == LedgerEntryKind.DEPOSIT
        assert deposit.local_address == ADDR_X
        assert deposit.amount == 50
        assert deposit.block_height == 1000
        assert deposit.transaction_id == "tx-950"
        assert deposit.counterparty_address == PAYER
        assert ledger.balance(ADDR_X) == 0
        assert result.scanned_from == 1000
        assert result.scanned_to == 900
        assert not result.terminated_early

    def test_stops_at_first_registered_transaction(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 10)
        expect(ledger, ADDR_Y, 20)
        expect(ledger, ADDR_Z, 30)
        paid(ledger, ADDR_Y, 20, "tx-980")
        wallet.add_deposit(990, "tx-990", ADDR_X, 10)
        wallet.add_deposit(980, "tx-980", ADDR_Y, 20)
        wallet.add_deposit(970, "tx-970", ADDR_Z, 30)

        result = scanner.run()

        assert [e.transaction_id for e in result.entries] == ["tx-990"]
        assert result.terminated_early
        assert result.scanned_to == 981
        assert not ledger.is_registered("tx-970")

    def test_process_all_continues_past_registered(self, wallet, ledger, scanner):
        expect(ledger, ADDR_Y, 20)
        expect(ledger, ADDR_Z, 30)
        paid(ledger, ADDR_Y, 20, "tx-980")
        wallet.add_deposit(980, "tx-980", ADDR_Y, 20)
        wallet.add_deposit(970, "tx-970", ADDR_Z, 30)

        result = scanner.run(process_all=True)

        assert [e.transaction_id for e in result.entries] == ["tx-970"]
        assert not result.terminated_early

    def test_rerun_is_idempotent(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        scanner.run()
        second = scanner.run()
        exhaustive = scanner.run(process_all=True)

        assert second.entries == []
        assert exhaustive.entries == []
        assert len(ledger.query(transaction_id="tx-950")) == 1

    def test_two_live_receivables_are_ambiguous(self, wallet, ledger, scanner, caplog):
        first = expect(ledger, ADDR_X, 50)
        second = expect(ledger, ADDR_X, 50)
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        with caplog.at_level(logging.ERROR, logger="sialedger"):
            result = scanner.run()

        assert result.entries == []
        assert not ledger.is_registered("tx-950")
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.transaction_id == "tx-950"
        assert set(conflict.candidate_ids) == {first.id, second.id}
        (record,) = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert record.transaction_id == "tx-950"
        assert record.address == ADDR_X

        with pytest.raises(AmbiguousMatchError):
            result.raise_for_conflicts()

    def test_deposit_without_receivable_is_unmatched(self, wallet, ledger, scanner):
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        result = scanner.run()

        assert result.entries == []
        assert result.unmatched == ["tx-950"]
        assert not ledger.is_registered("tx-950")
        result.raise_for_conflicts()

    def test_expired_receivable_does_not_match(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50, expires_in=timedelta(minutes=-5))
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        result = scanner.run()

        assert result.entries == []
        assert result.unmatched == ["tx-950"]

    def test_paid_receivable_does_not_match_again(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        paid(ledger, ADDR_X, 50, "tx-old")
        wallet.add_deposit(950, "tx-950", ADDR_X, 50)

        result = scanner.run()

        assert result.entries == []
        assert result.unmatched == ["tx-950"]

    def test_outgoing_transactions_are_ignored(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        wallet.add_spend(960, "tx-out", 75)

        result = scanner.run()

        assert result.entries == []
        assert result.unmatched == []

    def test_blocks_below_floor_are_not_visited(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        wallet.add_deposit(899, "tx-899", ADDR_X, 50)

        result = scanner.run()

        assert result.entries == []
        assert result.scanned_to == 900

    def test_several_transactions_in_one_block(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 10)
        expect(ledger, ADDR_Y, 20)
        wallet.add_deposit(950, "tx-a", ADDR_X, 10)
        wallet.add_deposit(950, "tx-b", ADDR_Y, 20)

        result = scanner.run()

        assert {e.transaction_id for e in result.entries} == {"tx-a", "tx-b"}

    def test_deposit_without_foreign_output(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        wallet.add_deposit(950, "tx-950", ADDR_X, 50, counterparty=None)

        result = scanner.run()

        assert result.entries[0].counterparty_address is None

    def test_height_below_floor_scans_nothing(self, wallet, ledger, scanner):
        wallet.height = 850
        wallet.add_deposit(850, "tx-850", ADDR_X, 50)

        result = scanner.run()

        assert result.entries == []
        assert result.unmatched == []
        assert result.scanned_to is None

    def test_negative_floor_rejected(self, wallet, ledger):
        with pytest.raises(ConfigurationError):
            ReconciliationScanner(wallet, ledger, floor_height=-1)

    def test_malformed_counterparty_address_is_dropped(self, wallet, ledger, scanner):
        expect(ledger, ADDR_X, 50)
        expect(ledger, ADDR_Y, 60)
        wallet.add_deposit(960, "tx-960", ADDR_X, 50, counterparty="")
        wallet.add_deposit(950, "tx-950", ADDR_Y, 60, counterparty="not-hex")

        result = scanner.run()

        assert [e.transaction_id for e in result.entries] == ["tx-960", "tx-950"]
        assert all(e.counterparty_address is None for e in result.entries)


class StoreRefusingKey(InMemoryStorage):
    """Memory storage whose insert misbehaves for one key."""

    def __init__(self, key, error=None):
        super().__init__()
        self.key = key
        self.error = error

    def insert(self, collection, key, data):
        if key == self.key:
            if self.error is not None:
                raise self.error
            # Another writer already holds the key
            return 0
        return super().insert(collection, key, data)


class TestInsertFailures:
    def test_write_failure_aborts_run(self, wallet, clock):
        storage = StoreRefusingKey("deposit:tx-960", error=RuntimeError("disk full"))
        ledger = Ledger(storage)
        ledger.set_watermark(900)
        for address, amount in ((ADDR_X, 10), (ADDR_Y, 20), (ADDR_Z, 30)):
            expect(ledger, address, amount)
        wallet.add_deposit(990, "tx-990", ADDR_X, 10)
        wallet.add_deposit(960, "tx-960", ADDR_Y, 20)
        wallet.add_deposit(950, "tx-950", ADDR_Z, 30)
        scanner = ReconciliationScanner(wallet, ledger, floor_height=900, clock=clock)

        with pytest.raises(LedgerWriteError):
            scanner.run()

        assert ledger.is_registered("tx-990")
        assert not ledger.is_registered("tx-960")
        assert not ledger.is_registered("tx-950")
        assert ledger.watermark() == 900

    def test_concurrent_insert_is_skipped(self, wallet, clock, caplog):
        storage = StoreRefusingKey("deposit:tx-960")
        ledger = Ledger(storage)
        expect(ledger, ADDR_Y, 20)
        expect(ledger, ADDR_Z, 30)
        wallet.add_deposit(960, "tx-960", ADDR_Y, 20)
        wallet.add_deposit(950, "tx-950", ADDR_Z, 30)
        scanner = ReconciliationScanner(wallet, ledger, floor_height=900, clock=clock)

        with caplog.at_level(logging.WARNING, logger="sialedger"):
            result = scanner.run()

        assert [e.transaction_id for e in result.entries] == ["tx-950"]
        assert not result.terminated_early
        assert result.scanned_to == 900
        assert "tx-960 was recorded concurrently" in caplog.text


class TestCheckpoint:
    def test_called_per_block_and_before_each_insert(self, wallet, ledger, clock):
        expect(ledger, ADDR_X, 10)
        wallet.add_deposit(998, "tx-998", ADDR_X, 10)
        scanner = ReconciliationScanner(wallet, ledger, floor_height=995, clock=clock)
        calls = []

        scanner.run(checkpoint=lambda: calls.append(ledger.is_registered("tx-998")))

        # Six blocks, plus one check just before tx-998 was recorded
        assert calls == [False, False, False, False, True, True, True]


class TestWatermark:
    def test_completed_run_stores_watermark(self, wallet, ledger, scanner):
        scanner.run()
        assert ledger.watermark() == 1000

    def test_early_stop_stores_watermark(self, wallet, ledger, scanner):
        expect(ledger, ADDR_Y, 20)
        paid(ledger, ADDR_Y, 20, "tx-980")
        wallet.add_deposit(980, "tx-980", ADDR_Y, 20)
        wallet.height = 1010

        scanner.run()

        assert ledger.watermark() == 1010

    def test_failed_run_keeps_previous_watermark(self, wallet, ledger, scanner):
        ledger.set_watermark(900)
        wallet.fail_at_height = 950

        with pytest.raises(NetworkError):
            scanner.run()

        assert ledger.watermark() == 900

    def test_registered_transaction_above_watermark_does_not_stop_scan(
        self, wallet, ledger, scanner
    ):
        # A run that died after recording tx-990 left tx-960 unrecorded
        ledger.set_watermark(920)
        expect(ledger, ADDR_X, 10)
        expect(ledger, ADDR_Y, 20)
        expect(ledger, ADDR_Z, 30)
        paid(ledger, ADDR_X, 10, "tx-990")
        wallet.add_deposit(990, "tx-990", ADDR_X, 10)
        wallet.add_deposit(960, "tx-960", ADDR_Y, 20)
        paid(ledger, ADDR_Z, 30, "tx-910")
        wallet.add_deposit(910, "tx-910", ADDR_Z, 30)

        result = scanner.run()

        assert [e.transaction_id for e in result.entries] == ["tx-960"]
        assert result.terminated_early
        assert result.scanned_to == 911
        assert ledger.watermark() == 1000

    def test_process_all_ignores_watermark(self, wallet, ledger, scanner):
        ledger.set_watermark(1000)
        expect(ledger, ADDR_X, 10)
        wallet.add_deposit(950, "tx-950", ADDR_X, 10)

        result = scanner.run(process_all=True)

        assert [e.transaction_id for e in result.entries] == ["tx-950"]
