"""savekeeper orchestrator - file-system side of the retention engine.

The orchestrator periodically:
- Lists the manual saves in the save directory
- Rebuilds the retention registry from them
- Deletes or recycles the saves the registry evicted
"""

from savekeeper.orchestrator.cleanup import SaveFileRemover
from savekeeper.orchestrator.reconciler import (
    RetentionReconciler,
    RetentionSweeper,
    SweepResult,
    build_reconciler,
)
from savekeeper.orchestrator.scanner import SaveDirectoryScanner

__all__ = [
    "RetentionReconciler",
    "RetentionSweeper",
    "SaveDirectoryScanner",
    "SaveFileRemover",
    "SweepResult",
    "build_reconciler",
]
