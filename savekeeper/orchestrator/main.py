"""Daemon entry point.

Runs the retention sweeper until SIGINT/SIGTERM, then lets the sweep in
flight finish before exiting.
"""

import asyncio
import signal
import sys

import structlog

import savekeeper.logging
import savekeeper.metrics
from savekeeper.config import Settings, get_settings
from savekeeper.orchestrator.reconciler import RetentionSweeper, build_reconciler

logger = structlog.get_logger()

DAEMON_SERVICE_NAME = "daemon"

# Shutdown flag
_shutdown_event: asyncio.Event | None = None
_loop: asyncio.AbstractEventLoop | None = None


async def daemon_loop(settings: Settings, dry_run: bool = False) -> None:
    """Run sweeps until a shutdown signal arrives or the sweeper fails."""
    global _shutdown_event, _loop
    _shutdown_event = asyncio.Event()
    _loop = asyncio.get_running_loop()

    reconciler = build_reconciler(settings)
    policy = reconciler.policy

    logger.info(
        "savekeeper_starting",
        save_dir=str(settings.save_dir),
        recycle=policy.archive_instead_of_delete,
        poll_interval_seconds=policy.poll_interval_seconds,
        primary_capacity=policy.primary_capacity,
        secondary_capacity=policy.secondary_capacity,
        tertiary_capacity=policy.tertiary_capacity,
        overflow_capacity=policy.overflow_capacity,
        dry_run=dry_run,
    )

    if settings.metrics_port:
        savekeeper.metrics.start_metrics_server(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    sweeper = RetentionSweeper(reconciler, dry_run=dry_run)
    await sweeper.start()

    shutdown_wait = asyncio.create_task(_shutdown_event.wait())
    try:
        await asyncio.wait(
            {shutdown_wait, sweeper.task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        shutdown_wait.cancel()
        await sweeper.stop()
        logger.info("savekeeper_stopped")


def request_shutdown() -> None:
    """Ask a running daemon loop to stop after its current sweep."""
    if _shutdown_event is None or _loop is None:
        return
    _loop.call_soon_threadsafe(_shutdown_event.set)


def _handle_shutdown(signum, frame) -> None:
    """Handle shutdown signals."""
    logger.info("shutdown_signal_received", signal=signum)
    request_shutdown()


def install_signal_handlers() -> None:
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)


def main() -> None:
    """Entry point for the daemon.

    Run with: python -m savekeeper.orchestrator.main
    """
    savekeeper.logging.configure(DAEMON_SERVICE_NAME)
    savekeeper.metrics.configure_metrics()
    install_signal_handlers()

    try:
        asyncio.run(daemon_loop(get_settings()))
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")
        sys.exit(0)


if __name__ == "__main__":
    main()
