"""SiaLedger - Main library entry point."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sialedger.core.config import Config
from sialedger.core.logging import configure_logging, get_logger
from sialedger.core.sia_client import SiaClient
from sialedger.core.types import WalletAdapter
from sialedger.ledger import Ledger, LedgerEntry, LedgerEntryKind, LedgerIssuer, ScanLockService
from sialedger.reconcile import ReconciliationScanner, ScanResult
from sialedger.storage import StorageBackend, get_storage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SiaLedger:
    """
    Main client for SiaLedger.

    Keeps an append-only ledger of receivables, deposits and withdrawals next
    to a Sia wallet and reconciles it against the chain.

    Example:
        >>> with SiaLedger() as sia:
        ...     receivable = sia.register_receivable(10**24, address)
        ...     result = sia.reconcile()
    """

    def __init__(
        self,
        config: Config | None = None,
        wallet: WalletAdapter | None = None,
        storage: StorageBackend | None = None,
        clock: Callable[[], datetime] | None = None,
        log_level: int | str | None = None,
    ) -> None:
        """
        Initialize SiaLedger.

        Args:
            config: Library configuration (default: loaded from environment)
            wallet: Daemon wallet adapter (default: SiaClient for config.rpc_address)
            storage: Storage backend (default: built from config.storage_backend)
            clock: Source of the current UTC time, used for receivable expiry
            log_level: Logging level (default: config.log_level)
        """
        self._config = config or Config.from_env()

        configure_logging(
            level=log_level or self._config.log_level,
            json_format=self._config.log_json,
        )
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing SiaLedger (daemon: {self._config.rpc_address}, "
            f"storage: {self._config.storage_backend})"
        )

        self._owns_wallet = wallet is None
        self._wallet: WalletAdapter = wallet if wallet is not None else SiaClient(self._config)

        self._owns_storage = storage is None
        self._storage = storage if storage is not None else get_storage(
            self._config.storage_backend, **self._storage_options()
        )

        clock = clock or _utcnow
        self._ledger = Ledger(self._storage)
        self._issuer = LedgerIssuer(
            self._wallet,
            self._ledger,
            default_ttl=timedelta(seconds=self._config.receivable_ttl),
            clock=clock,
        )
        self._scanner = ReconciliationScanner(
            self._wallet,
            self._ledger,
            floor_height=self._config.floor_height,
            clock=clock,
        )
        self._scan_lock = ScanLockService(self._storage, ttl=self._config.scan_lock_ttl)

    def _storage_options(self) -> dict[str, Any]:
        if self._config.storage_backend == "redis" and self._config.redis_url:
            return {"redis_url": self._config.redis_url}
        if self._config.storage_backend == "sql" and self._config.database_url:
            return {"database_url": self._config.database_url}
        return {}

    @property
    def config(self) -> Config:
        """Get library configuration."""
        return self._config

    @property
    def wallet(self) -> WalletAdapter:
        """Get the daemon wallet adapter."""
        return self._wallet

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def ledger(self) -> Ledger:
        """Get the reconciliation ledger."""
        return self._ledger

    def __enter__(self) -> SiaLedger:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the daemon client and storage connections this instance created."""
        if self._owns_wallet and isinstance(self._wallet, SiaClient):
            self._wallet.close()
        if self._owns_storage:
            self._storage.close()

    # ==================== Issuing ====================

    def register_receivable(
        self,
        amount: int,
        local_address: str,
        expires_at: datetime | timedelta | None = None,
    ) -> LedgerEntry:
        """
        Register a payment expected at a wallet address.

        Args:
            amount: Amount owed in hastings
            local_address: Wallet address bound to the payment
            expires_at: Expiry time or lifetime (default: config.receivable_ttl)

        Returns:
            The recorded receivable
        """
        return self._issuer.register_receivable(amount, local_address, expires_at=expires_at)

    def issue_withdrawal(self, amount: int, counterparty_address: str) -> LedgerEntry:
        """
        Send funds and record the withdrawal.

        Raises:
            SendError: The send failed; nothing was recorded
            SendOutcomeUnknownError: The send may have gone through; check the
                wallet before retrying
            PostSendLedgerError: Funds left the wallet but the ledger has no record
        """
        return self._issuer.issue_withdrawal(amount, counterparty_address)

    # ==================== Reconciliation ====================

    def reconcile(
        self,
        process_all: bool | None = None,
        lock_retry_count: int = 0,
        lock_retry_delay: float = 0.5,
    ) -> ScanResult:
        """
        Run one reconciliation pass under the scan lock.

        The lock is renewed before every block and every deposit insert. A run
        that finds its lock taken over stops without writing further.

        Args:
            process_all: Scan down to the floor height instead of stopping at the
                first registered transaction (default: config.process_all)
            lock_retry_count: Retries if another run holds the lock
            lock_retry_delay: Seconds between lock retries

        Returns:
            ScanResult of the run

        Raises:
            ScanInProgressError: Another run holds the scan lock, or took it over
                after this run's lock expired
        """
        if process_all is None:
            process_all = self._config.process_all

        with self._scan_lock.hold(
            retry_count=lock_retry_count, retry_delay=lock_retry_delay
        ) as token:
            return self._scanner.run(
                process_all=process_all,
                checkpoint=lambda: self._scan_lock.keep_alive(token),
            )

    # ==================== Queries ====================

    def balance(self, local_address: str) -> int:
        """Running balance of an address in hastings (negative while money is owed)."""
        return self._ledger.balance(local_address)

    def entries(
        self,
        kind: LedgerEntryKind | str | None = None,
        local_address: str | None = None,
        counterparty_address: str | None = None,
        transaction_id: str | None = None,
        match_any: bool = False,
        limit: int | None = None,
    ) -> list[LedgerEntry]:
        """Query ledger entries by exact field match."""
        return self._ledger.query(
            kind=kind,  # type: ignore[arg-type]
            local_address=local_address,
            counterparty_address=counterparty_address,
            transaction_id=transaction_id,
            match_any=match_any,
            limit=limit,
        )
