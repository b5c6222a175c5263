"""Unit tests for RetentionRegistry."""

import random

import pytest

from savekeeper.common.models import EvictionReason, Tier
from savekeeper.retention.registry import RetentionRegistry, submission_order

OTHER_CHAIN = 0x00C0FFEE


def _layout(registry):
    return {
        chain_id: registry.chain(chain_id).snapshot() for chain_id in registry.chain_ids
    }


class TestRouting:
    """Tests for grouping records by chain."""

    def test_records_grouped_by_chain(self, make_policy, make_record):
        registry = RetentionRegistry(make_policy())

        registry.add_record(make_record(1, 100))
        registry.add_record(make_record(1, 200, chain_id=OTHER_CHAIN))
        registry.add_record(make_record(2, 300))

        assert len(registry) == 2
        assert registry.chain_ids == [OTHER_CHAIN, 0x0A1B2C3D]
        assert len(registry.chain(0x0A1B2C3D)) == 2
        assert len(registry.chain(OTHER_CHAIN)) == 1

    def test_unknown_chain_returns_none(self, make_policy):
        registry = RetentionRegistry(make_policy())
        assert registry.chain(0x12345678) is None

    def test_chains_do_not_affect_each_other(self, make_policy, make_record):
        """A busy chain never evicts records of another chain."""
        registry = RetentionRegistry(
            make_policy(primary_capacity=1, secondary_capacity=0, overflow_capacity=0)
        )

        registry.add_record(make_record(1, 5, chain_id=OTHER_CHAIN))
        for seq in range(1, 6):
            registry.add_record(make_record(seq, seq * 10))

        assert [r.timestamp for r in registry.chain(OTHER_CHAIN).records] == [5]
        assert all(e.record.chain_id == 0x0A1B2C3D for e in registry.evictions)
        assert len(registry.evictions) == 4

    def test_duplicates_collected(self, make_policy, make_record):
        registry = RetentionRegistry(make_policy())
        registry.add_record(make_record(7, 100))

        duplicate = make_record(7, 200)
        assert registry.add_record(duplicate) is False
        assert registry.duplicates == [duplicate]

    def test_same_sequence_number_in_different_chains(self, make_policy, make_record):
        registry = RetentionRegistry(make_policy())

        assert registry.add_record(make_record(7, 100)) is True
        assert registry.add_record(make_record(7, 100, chain_id=OTHER_CHAIN)) is True
        assert registry.duplicates == []


class TestRebuild:
    """Tests for RetentionRegistry.rebuild()."""

    def test_submits_oldest_first(self, make_policy, make_record):
        policy = make_policy(secondary_min_spacing_seconds=3600)
        records = [make_record(seq, ts) for seq, ts in enumerate([100, 90, 80, 70, 60])]

        registry = RetentionRegistry.rebuild(records, policy)
        chain = registry.chain(0x0A1B2C3D)

        assert [r.timestamp for r in chain.tier(Tier.PRIMARY)] == [100, 90]
        assert [r.timestamp for r in chain.tier(Tier.SECONDARY)] == [80, 60]
        assert [e.record.timestamp for e in registry.evictions] == [70]
        assert registry.evictions[0].reason == EvictionReason.THINNED

    @pytest.mark.parametrize("seed", range(10))
    def test_result_independent_of_input_order(self, make_policy, make_record, seed):
        policy = make_policy(
            primary_capacity=2,
            secondary_capacity=3,
            secondary_min_spacing_seconds=15,
            tertiary_capacity=2,
            tertiary_min_spacing_seconds=40,
            overflow_capacity=3,
            overflow_min_spacing_seconds=60,
        )
        records = [make_record(seq, seq * 7 % 101) for seq in range(1, 30)]
        records += [
            make_record(seq, seq * 13, chain_id=OTHER_CHAIN) for seq in range(1, 12)
        ]

        shuffled = list(records)
        random.Random(seed).shuffle(shuffled)

        expected = RetentionRegistry.rebuild(records, policy)
        actual = RetentionRegistry.rebuild(shuffled, policy)

        assert _layout(actual) == _layout(expected)
        assert [e.record.id for e in actual.evictions] == [
            e.record.id for e in expected.evictions
        ]

    def test_duplicate_resolution_is_deterministic(self, make_policy, make_record):
        """Of two records sharing a sequence number, the older one is kept."""
        older = make_record(3, 100)
        newer = make_record(3, 200)

        for records in ([older, newer], [newer, older]):
            registry = RetentionRegistry.rebuild(records, make_policy())
            assert registry.chain(0x0A1B2C3D).get(3) == older
            assert registry.duplicates == [newer]

    def test_empty_input(self, make_policy):
        registry = RetentionRegistry.rebuild([], make_policy())
        assert len(registry) == 0
        assert registry.evictions == []
        assert registry.retained_records() == []

    def test_retained_plus_evicted_equals_accepted(self, make_policy, make_record):
        policy = make_policy(
            primary_capacity=1,
            secondary_capacity=2,
            secondary_min_spacing_seconds=25,
            overflow_capacity=2,
        )
        records = [make_record(seq, seq * 10) for seq in range(20)]

        registry = RetentionRegistry.rebuild(records, policy)

        retained = {r.id for r in registry.retained_records()}
        evicted = {e.record.id for e in registry.evictions}
        assert retained.isdisjoint(evicted)
        assert retained | evicted == {r.id for r in records}


class TestSubmissionOrder:
    """Tests for the canonical submission sort key."""

    def test_orders_by_timestamp_then_sequence_number(self, make_record):
        a = make_record(5, 100)
        b = make_record(2, 200)
        c = make_record(1, 200)

        assert sorted([b, a, c], key=submission_order) == [a, c, b]
