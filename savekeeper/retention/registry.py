"""Per-chain retention state for one scan cycle.

The registry is rebuilt from the records found on disk every cycle and holds
no state between cycles. Evictions decided while rebuilding are collected in
``evictions`` for the reconciler to act on.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from savekeeper.common.models import Eviction, RetentionPolicy, SaveRecord
from savekeeper.retention.chain import RetentionChain


def submission_order(record: SaveRecord) -> tuple[int, int, str]:
    """Sort key that replays records in the order they were produced."""
    return (record.timestamp, record.sequence_number, record.id)


class RetentionRegistry:
    """Owns one RetentionChain per chain id."""

    def __init__(self, policy: RetentionPolicy) -> None:
        self.policy = policy
        self.evictions: list[Eviction] = []
        self.duplicates: list[SaveRecord] = []
        self._chains: dict[int, RetentionChain] = {}

    @classmethod
    def rebuild(
        cls, records: Iterable[SaveRecord], policy: RetentionPolicy
    ) -> RetentionRegistry:
        """Build a registry from a flat list of discovered records.

        Records are submitted oldest first regardless of the order given,
        so the same set of records always yields the same tiers and the
        same evictions.

        Raises:
            RetentionInvariantError: If any chain ends up inconsistent.
        """
        registry = cls(policy)
        for record in sorted(records, key=submission_order):
            registry.add_record(record)
        registry.verify()
        return registry

    def __len__(self) -> int:
        return len(self._chains)

    def __iter__(self) -> Iterator[RetentionChain]:
        return iter(self._chains.values())

    @property
    def chain_ids(self) -> list[int]:
        return sorted(self._chains)

    def chain(self, chain_id: int) -> RetentionChain | None:
        return self._chains.get(chain_id)

    def add_record(self, record: SaveRecord) -> bool:
        """Route a record to its chain, creating the chain on first use."""
        chain = self._chains.get(record.chain_id)
        if chain is None:
            chain = RetentionChain(
                record.chain_id, self.policy, on_evict=self.evictions.append
            )
            self._chains[record.chain_id] = chain

        accepted = chain.add_record(record)
        if not accepted:
            self.duplicates.append(record)
        return accepted

    def retained_records(self) -> list[SaveRecord]:
        """Every record still held by any chain."""
        return [record for chain in self for record in chain.records]

    def verify(self) -> None:
        for chain in self._chains.values():
            chain.verify()
