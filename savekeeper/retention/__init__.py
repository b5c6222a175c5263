"""Tiered save retention engine.

Pure in-memory bookkeeping: no I/O, no logging. The orchestrator feeds it
records and acts on the evictions it decides.
"""

from savekeeper.retention.chain import RetentionChain
from savekeeper.retention.exceptions import RetentionInvariantError
from savekeeper.retention.registry import RetentionRegistry

__all__ = [
    "RetentionChain",
    "RetentionInvariantError",
    "RetentionRegistry",
]
