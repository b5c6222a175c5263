"""Retention engine exceptions."""

from __future__ import annotations


class RetentionInvariantError(RuntimeError):
    """Raised when a chain breaks tier ordering, capacity or bookkeeping.

    This is never a data problem: any input sequence must leave every chain
    consistent after rebalancing, so this error means the tiering algorithm
    itself is broken. Callers must not recover from it.
    """

    def __init__(self, chain_id: int, message: str) -> None:
        super().__init__(f"chain {chain_id:08X}: {message}")
        self.chain_id = chain_id
        self.message = message
