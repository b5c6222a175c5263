"""Retention sweeps: scan the save directory, rebalance, remove evictions.

A sweep is synchronous and self-contained:

1. List the manual saves on disk and parse them into records
2. Rebuild a fresh RetentionRegistry from those records
3. Remove every record the registry evicted, one file at a time

RetentionSweeper repeats sweeps on a background task. Only one sweep is in
flight at a time; the poll interval starts counting once a sweep, including
its deletions, has finished, so an overrunning sweep delays the next one.
"""

import asyncio
import time
from dataclasses import dataclass, field
from uuid import uuid4

import structlog

import savekeeper.logging
import savekeeper.metrics
from savekeeper.common.models import Eviction, RetentionPolicy
from savekeeper.config import Settings
from savekeeper.orchestrator.cleanup import SaveFileRemover
from savekeeper.orchestrator.scanner import SaveDirectoryScanner
from savekeeper.retention.exceptions import RetentionInvariantError
from savekeeper.retention.registry import RetentionRegistry

logger = structlog.get_logger()


@dataclass
class SweepResult:
    """Outcome of one sweep."""

    registry: RetentionRegistry
    records_scanned: int
    dry_run: bool = False
    removed: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def evictions(self) -> list[Eviction]:
        return self.registry.evictions

    @property
    def retained(self) -> int:
        return len(self.registry.retained_records())

    @property
    def duplicates(self) -> int:
        return len(self.registry.duplicates)


class RetentionReconciler:
    """Applies the retention policy to the save directory once per call."""

    def __init__(
        self,
        scanner: SaveDirectoryScanner,
        remover: SaveFileRemover,
        policy: RetentionPolicy,
    ):
        self.scanner = scanner
        self.remover = remover
        self.policy = policy

    def reconcile(self, dry_run: bool = False) -> SweepResult:
        """Run one sweep.

        Args:
            dry_run: Decide evictions without touching any file

        Raises:
            RetentionInvariantError: If rebalancing left a chain inconsistent
        """
        started = time.monotonic()

        records = self.scanner.discover()
        registry = RetentionRegistry.rebuild(records, self.policy)
        result = SweepResult(
            registry=registry, records_scanned=len(records), dry_run=dry_run
        )

        for duplicate in registry.duplicates:
            logger.debug(
                "duplicate_sequence_number_ignored",
                identifier=duplicate.id,
                chain_id=duplicate.chain_hex,
                sequence_number=duplicate.sequence_number,
            )

        for eviction in registry.evictions:
            record = eviction.record
            if dry_run:
                logger.info(
                    "save_eviction_planned",
                    identifier=record.id,
                    tier=eviction.tier.value,
                    reason=eviction.reason.value,
                )
                continue

            savekeeper.metrics.inc_records_evicted(eviction.reason.value)
            if self.remover.remove(record):
                result.removed += 1
            else:
                result.failed.append(record.id)
                savekeeper.metrics.inc_removal_failures()

        savekeeper.metrics.inc_sweeps("dry_run" if dry_run else "success")
        savekeeper.metrics.set_records_retained(result.retained)
        savekeeper.metrics.observe_sweep_duration(time.monotonic() - started)
        return result


def build_reconciler(settings: Settings) -> RetentionReconciler:
    """Wire a reconciler to the configured save directory."""
    policy = settings.to_policy()
    recycle_dir = settings.recycle_dir if policy.archive_instead_of_delete else None
    return RetentionReconciler(
        scanner=SaveDirectoryScanner(settings.save_dir),
        remover=SaveFileRemover(settings.save_dir, recycle_dir=recycle_dir),
        policy=policy,
    )


class RetentionSweeper:
    """Background task that runs a sweep every poll interval.

    Sweeps run in a worker thread so file I/O never blocks the event loop.
    ``stop()`` never interrupts a sweep: it waits for the one in flight to
    finish, then returns.
    """

    def __init__(
        self,
        reconciler: RetentionReconciler,
        poll_interval_seconds: float | None = None,
        dry_run: bool = False,
    ):
        """Initialize the sweeper.

        Args:
            reconciler: Performs the individual sweeps
            poll_interval_seconds: Pause between sweeps (default: policy value)
            dry_run: Log evictions without removing files
        """
        self._reconciler = reconciler
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else reconciler.policy.poll_interval_seconds
        )
        self._dry_run = dry_run
        self._running = False
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self.last_result: SweepResult | None = None

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    async def start(self) -> None:
        """Start the sweeper background task."""
        if self._running:
            logger.warning("retention_sweeper_already_running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "retention_sweeper_started",
            poll_interval_seconds=self._poll_interval,
            dry_run=self._dry_run,
        )

    async def stop(self) -> None:
        """Stop the sweeper once any in-flight sweep has finished.

        Raises:
            RetentionInvariantError: If the loop ended because of one
        """
        self._running = False
        if self._stop_event:
            self._stop_event.set()

        task, self._task = self._task, None
        try:
            if task:
                await task
        finally:
            logger.info("retention_sweeper_stopped")

    async def _wait_for_stop(self) -> bool:
        """Sleep for one poll interval; return True if asked to stop."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), self._poll_interval)
            return True
        except TimeoutError:
            return False

    async def _run_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            if await self._wait_for_stop():
                break

            try:
                await self._sweep()
            except RetentionInvariantError:
                logger.critical("retention_invariant_violated", exc_info=True)
                savekeeper.metrics.inc_sweeps("error")
                self._running = False
                raise
            except Exception:
                logger.error("retention_sweep_error", exc_info=True)
                savekeeper.metrics.inc_sweeps("error")
                # Continue running despite errors

    async def _sweep(self) -> None:
        """Perform one sweep off the event loop."""
        savekeeper.logging.reset_context(sweep_id=uuid4().hex[:12])

        result = await asyncio.to_thread(self._reconciler.reconcile, self._dry_run)
        self.last_result = result

        if result.evictions or result.failed:
            logger.info(
                "retention_sweep_complete",
                records_scanned=result.records_scanned,
                chains=len(result.registry),
                evicted=len(result.evictions),
                removed=result.removed,
                failed=len(result.failed),
                dry_run=result.dry_run,
            )
        else:
            logger.debug(
                "retention_sweep_complete",
                records_scanned=result.records_scanned,
                chains=len(result.registry),
            )
