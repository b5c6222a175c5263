"""Shared fixtures for savekeeper tests."""

import logging

import pytest
import structlog

from savekeeper.common.models import RetentionPolicy, SaveRecord

CHAIN_ID = 0x0A1B2C3D


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any logging configuration a test (or the CLI) applied."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    logging.getLogger().handlers.clear()


@pytest.fixture
def make_record():
    """Factory for records with a readable synthetic identifier."""

    def _make(
        sequence_number: int, timestamp: int, chain_id: int = CHAIN_ID
    ) -> SaveRecord:
        return SaveRecord(
            id=f"Save{sequence_number}_{chain_id:08X}_t{timestamp}",
            sequence_number=sequence_number,
            chain_id=chain_id,
            timestamp=timestamp,
        )

    return _make


@pytest.fixture
def make_policy():
    """Factory for small policies; thinning is off unless a spacing is given."""

    def _make(**overrides) -> RetentionPolicy:
        values = {
            "primary_capacity": 2,
            "secondary_capacity": 2,
            "secondary_min_spacing_seconds": 0,
            "tertiary_capacity": 0,
            "tertiary_min_spacing_seconds": 0,
            "overflow_capacity": -1,
            "overflow_min_spacing_seconds": 0,
        }
        values.update(overrides)
        return RetentionPolicy(**values)

    return _make
