"""
Example: Accepting a siacoin payment

Registers a receivable on a fresh wallet address, then reconciles the ledger
against the chain until the payment arrives or the receivable lapses.

Configure through .env, e.g.:
    SIA_RPC_ADDRESS=127.0.0.1:9980
    SIALEDGER_STORAGE_BACKEND=sql
    SIALEDGER_DATABASE_URL=sqlite:///sialedger.db
    SIALEDGER_FLOOR_HEIGHT=22100
"""

import sys
import time
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv

load_dotenv()

from sialedger import (  # noqa: E402
    SiaClient,
    SiaLedger,
    SiaLedgerError,
    hastings_to_siacoins,
    siacoins_to_hastings,
)


def main(amount_sc: str = "25") -> int:
    print("=== SiaLedger Payment Example ===\n")

    with SiaLedger() as sia, SiaClient(sia.config) as wallet:
        address = wallet.wallet_address()
        amount = siacoins_to_hastings(amount_sc)
        receivable = sia.register_receivable(amount, address, expires_at=timedelta(hours=1))

        print(f"Send {amount_sc} SC to {address}")
        print(f"Receivable {receivable.id} expires at {receivable.expires_at:%H:%M} UTC\n")

        while datetime.now(timezone.utc) < receivable.expires_at:
            try:
                result = sia.reconcile()
            except SiaLedgerError as e:
                print(f"Reconciliation failed: {e}")
                return 1

            for conflict in result.conflicts:
                print(f"Deposit {conflict.transaction_id} needs manual review")

            balance = sia.balance(address)
            if balance >= 0:
                print(f"Paid in full (balance {hastings_to_siacoins(balance)} SC)")
                for entry in sia.entries(local_address=address):
                    print(f"  {entry.kind.value:<10} {hastings_to_siacoins(entry.amount)} SC")
                return 0

            print(f"Still owed {hastings_to_siacoins(-balance)} SC; checking again in 60s")
            time.sleep(60)

    print("Receivable expired before payment arrived")
    return 1


if __name__ == "__main__":
    sys.exit(main(*sys.argv[1:2]))
