"""Net balance change a transaction causes to the local wallet."""

from __future__ import annotations

from sialedger.core.types import Transaction


def net_amount(transaction: Transaction | None) -> int:
    """
    Get net amount moved to/from the wallet in a transaction, in hastings.

    Wallet-owned outputs count positive and wallet-owned inputs negative, so a
    positive result is money received and a negative one money sent. Foreign
    inputs and outputs are ignored.
    """
    if transaction is None:
        return 0

    total = 0
    for tx_input in transaction.inputs or ():
        if tx_input.wallet_owned:
            total -= tx_input.value
    for tx_output in transaction.outputs or ():
        if tx_output.wallet_owned:
            total += tx_output.value
    return total
