"""Tiered retention for the saves of one play-through.

A chain buckets its records into four tiers ordered newest to oldest:

    primary -> secondary -> tertiary -> overflow

Each tier holds sequence numbers sorted by descending timestamp. The record
table is shared by all tiers and is the only place records live, so moving
a record between tiers only moves its key.

Rebalancing runs after every insertion:

1. Primary keeps its newest ``primary_capacity`` entries; the rest move to
   the front of secondary.
2. Secondary and tertiary are thinned (see ``_thin``), then their oldest
   entries beyond capacity move to the front of the next tier.
3. Overflow is thinned, then its oldest entries beyond capacity are
   evicted (unless the capacity is unbounded).

Only thinning and the overflow cap evict records. Every eviction is handed
to the ``on_evict`` callback so the caller can remove the file.
"""

from __future__ import annotations

import bisect
from collections.abc import Callable

from savekeeper.common.models import (
    TIER_ORDER,
    UNBOUNDED,
    Eviction,
    EvictionReason,
    RetentionPolicy,
    SaveRecord,
    Tier,
)
from savekeeper.retention.exceptions import RetentionInvariantError

EvictionCallback = Callable[[Eviction], None]


class RetentionChain:
    """Tier bookkeeping and rebalancing for a single chain id."""

    def __init__(
        self,
        chain_id: int,
        policy: RetentionPolicy,
        on_evict: EvictionCallback | None = None,
    ) -> None:
        self.chain_id = chain_id
        self.policy = policy
        self._on_evict = on_evict
        self._records: dict[int, SaveRecord] = {}
        self._tiers: dict[Tier, list[int]] = {tier: [] for tier in TIER_ORDER}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, sequence_number: object) -> bool:
        return sequence_number in self._records

    def get(self, sequence_number: int) -> SaveRecord | None:
        """Look up a retained record by sequence number."""
        return self._records.get(sequence_number)

    def tier(self, tier: Tier) -> list[SaveRecord]:
        """Records currently in a tier, newest first."""
        return [self._records[key] for key in self._tiers[tier]]

    def snapshot(self) -> dict[Tier, tuple[int, ...]]:
        """Sequence numbers per tier, newest first."""
        return {tier: tuple(keys) for tier, keys in self._tiers.items()}

    @property
    def records(self) -> list[SaveRecord]:
        """All retained records, newest first."""
        return [record for tier in TIER_ORDER for record in self.tier(tier)]

    def add_record(self, record: SaveRecord) -> bool:
        """Insert a record and rebalance.

        Returns:
            False when a record with the same sequence number is already
            present (the first one seen is kept), True otherwise.

        Raises:
            ValueError: If the record belongs to a different chain.
        """
        if record.chain_id != self.chain_id:
            raise ValueError(
                f"record {record.id!r} belongs to chain {record.chain_hex}, "
                f"not {self.chain_id:08X}"
            )
        if record.sequence_number in self._records:
            return False

        self._records[record.sequence_number] = record
        self._insert(self._select_tier(record), record)
        self.rebalance()
        return True

    def rebalance(self) -> None:
        """Cascade, thin and trim tiers until every tier is within bounds."""
        self._cascade(Tier.PRIMARY, Tier.SECONDARY)

        self._thin(Tier.SECONDARY)
        self._cascade(Tier.SECONDARY, Tier.TERTIARY)

        self._thin(Tier.TERTIARY)
        self._cascade(Tier.TERTIARY, Tier.OVERFLOW)

        self._thin(Tier.OVERFLOW)
        self._trim_overflow()

    def verify(self) -> None:
        """Check tier ordering, capacity and key bookkeeping.

        Raises:
            RetentionInvariantError: On the first violation found.
        """
        seen: set[int] = set()
        for tier in TIER_ORDER:
            keys = self._tiers[tier]
            for key in keys:
                if key not in self._records:
                    raise RetentionInvariantError(
                        self.chain_id, f"{tier.value} holds unknown key {key}"
                    )
                if key in seen:
                    raise RetentionInvariantError(
                        self.chain_id, f"key {key} appears in more than one slot"
                    )
                seen.add(key)

            timestamps = [self._timestamp(key) for key in keys]
            if any(newer < older for newer, older in zip(timestamps, timestamps[1:])):
                raise RetentionInvariantError(
                    self.chain_id, f"{tier.value} is not ordered newest first"
                )

            capacity = self.policy.capacity(tier)
            if capacity != UNBOUNDED and len(keys) > capacity:
                raise RetentionInvariantError(
                    self.chain_id,
                    f"{tier.value} holds {len(keys)} records, capacity {capacity}",
                )

        if seen != self._records.keys():
            raise RetentionInvariantError(
                self.chain_id, "record table and tiers disagree"
            )

        non_empty = [self._tiers[tier] for tier in TIER_ORDER if self._tiers[tier]]
        for finer, coarser in zip(non_empty, non_empty[1:]):
            if self._timestamp(finer[-1]) < self._timestamp(coarser[0]):
                raise RetentionInvariantError(
                    self.chain_id, "a coarser tier holds a newer record"
                )

    def _timestamp(self, key: int) -> int:
        return self._records[key].timestamp

    def _select_tier(self, record: SaveRecord) -> Tier:
        """Pick the first tier that can take the record.

        A tier takes the record if its oldest entry is older than the record,
        or if it has room and no coarser tier holds anything newer. Tiers
        with capacity 0 are only passed through during rebalancing.
        """
        for index, tier in enumerate(TIER_ORDER):
            capacity = self.policy.capacity(tier)
            if capacity == 0:
                continue

            keys = self._tiers[tier]
            if keys and self._timestamp(keys[-1]) < record.timestamp:
                return tier

            has_room = capacity == UNBOUNDED or len(keys) < capacity
            newest_coarser = self._newest_after(index)
            if has_room and (
                newest_coarser is None or newest_coarser <= record.timestamp
            ):
                return tier

        return Tier.OVERFLOW

    def _newest_after(self, index: int) -> int | None:
        for tier in TIER_ORDER[index + 1 :]:
            keys = self._tiers[tier]
            if keys:
                return self._timestamp(keys[0])
        return None

    def _insert(self, tier: Tier, record: SaveRecord) -> None:
        keys = self._tiers[tier]
        # Equal timestamps keep insertion order
        position = bisect.bisect_right(
            keys, -record.timestamp, key=lambda key: -self._timestamp(key)
        )
        keys.insert(position, record.sequence_number)

    def _cascade(self, source: Tier, target: Tier) -> None:
        keys = self._tiers[source]
        capacity = self.policy.capacity(source)
        while len(keys) > capacity:
            self._tiers[target].insert(0, keys.pop())

    def _thin(self, tier: Tier) -> None:
        """Drop middle records whose neighbours are already closer than the spacing.

        Walks from the oldest triplet to the newest. Deleting ``r[i-1]`` only
        widens the gaps already checked, so a single pass leaves every
        remaining triplet at least ``spacing`` apart end to end.
        """
        spacing = self.policy.min_spacing_seconds(tier)
        keys = self._tiers[tier]

        i = len(keys) - 1
        while i >= 2:
            if self._timestamp(keys[i - 2]) - self._timestamp(keys[i]) < spacing:
                self._evict(tier, i - 1, EvictionReason.THINNED)
            i -= 1

    def _trim_overflow(self) -> None:
        capacity = self.policy.capacity(Tier.OVERFLOW)
        if capacity == UNBOUNDED:
            return

        keys = self._tiers[Tier.OVERFLOW]
        while len(keys) > capacity:
            self._evict(Tier.OVERFLOW, len(keys) - 1, EvictionReason.OVER_CAPACITY)

    def _evict(self, tier: Tier, index: int, reason: EvictionReason) -> None:
        key = self._tiers[tier].pop(index)
        record = self._records.pop(key)
        if self._on_evict is not None:
            self._on_evict(Eviction(record=record, tier=tier, reason=reason))
