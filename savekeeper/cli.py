"""CLI entry point for savekeeper.

Provides the `savekeeper` command:

    savekeeper run       Run the retention daemon
    savekeeper plan      Show which saves the policy would evict
    savekeeper status    Show per-chain tier occupancy
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

import savekeeper.logging
import savekeeper.metrics
from savekeeper import __version__
from savekeeper.common.models import TIER_ORDER, SaveRecord
from savekeeper.config import Settings, load_settings
from savekeeper.orchestrator.main import (
    DAEMON_SERVICE_NAME,
    daemon_loop,
    install_signal_handlers,
)
from savekeeper.orchestrator.reconciler import SweepResult, build_reconciler
from savekeeper.retention.exceptions import RetentionInvariantError

# Exit code for internal defects (EX_SOFTWARE)
EXIT_INTERNAL_ERROR = 70

app = typer.Typer(
    name="savekeeper",
    help="savekeeper - Tiered retention for Skyrim save files.",
    no_args_is_help=True,
)

# Console instances for stdout and stderr
console = Console()
error_console = Console(stderr=True)

IniOption = Annotated[
    Path | None,
    typer.Option(
        "--ini",
        help="INI file with retention settings (default: $SAVEKEEPER_INI or savekeeper.ini).",
    ),
]
SaveDirOption = Annotated[
    Path | None,
    typer.Option(
        "--save-dir",
        "-d",
        help="Save directory (default: from settings).",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output as JSON.",
    ),
]


def version_callback(value: bool) -> None:
    """Handle --version flag."""
    if value:
        print(f"savekeeper {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """savekeeper - Tiered retention for Skyrim save files."""
    savekeeper.logging.configure("cli")


def _load_settings(ini: Path | None, save_dir: Path | None) -> Settings:
    return load_settings(ini, save_dir=save_dir)


def _sweep(settings: Settings, dry_run: bool) -> SweepResult:
    try:
        return build_reconciler(settings).reconcile(dry_run=dry_run)
    except RetentionInvariantError as e:
        error_console.print(f"[red]Internal error: {e}[/red]")
        raise typer.Exit(code=EXIT_INTERNAL_ERROR) from e


def _format_time(record: SaveRecord) -> str:
    produced_at = record.produced_at
    return produced_at.isoformat(sep=" ") if produced_at else "unknown"


@app.command()
def run(
    ini: IniOption = None,
    save_dir: SaveDirOption = None,
    once: Annotated[
        bool,
        typer.Option(
            "--once",
            help="Run a single sweep and exit.",
        ),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Decide evictions but do not touch any file.",
        ),
    ] = False,
) -> None:
    """Run the retention daemon until interrupted.

    Examples:

        savekeeper run

        savekeeper run --once --save-dir ./Saves
    """
    settings = _load_settings(ini, save_dir)

    if once:
        result = _sweep(settings, dry_run)
        verb = "Would evict" if result.dry_run else "Evicted"
        console.print(
            f"Scanned {result.records_scanned} saves in {len(result.registry)} chains. "
            f"{verb} {len(result.evictions)}, kept {result.retained}."
        )
        if result.failed:
            error_console.print(
                f"[red]Failed to remove {len(result.failed)} saves:[/red] "
                + ", ".join(result.failed)
            )
            raise typer.Exit(code=1)
        return

    savekeeper.logging.configure(DAEMON_SERVICE_NAME)
    savekeeper.metrics.configure_metrics()
    install_signal_handlers()
    try:
        asyncio.run(daemon_loop(settings, dry_run=dry_run))
    except RetentionInvariantError as e:
        error_console.print(f"[red]Internal error: {e}[/red]")
        raise typer.Exit(code=EXIT_INTERNAL_ERROR) from e


@app.command()
def plan(
    ini: IniOption = None,
    save_dir: SaveDirOption = None,
    as_json: JsonOption = False,
) -> None:
    """Show which saves the retention policy would evict.

    Nothing is deleted.

    Examples:

        savekeeper plan

        savekeeper plan --json
    """
    result = _sweep(_load_settings(ini, save_dir), dry_run=True)

    if as_json:
        console.print_json(
            data={
                "records_scanned": result.records_scanned,
                "retained": result.retained,
                "evictions": [
                    {
                        "id": eviction.record.id,
                        "chain_id": eviction.record.chain_hex,
                        "sequence_number": eviction.record.sequence_number,
                        "tier": eviction.tier.value,
                        "reason": eviction.reason.value,
                    }
                    for eviction in result.evictions
                ],
            }
        )
        return

    if not result.evictions:
        console.print(f"Nothing to evict ({result.retained} saves kept).")
        return

    table = Table(title=f"{len(result.evictions)} saves to evict")
    table.add_column("Save")
    table.add_column("Chain")
    table.add_column("Saved at")
    table.add_column("Tier")
    table.add_column("Reason")
    for eviction in result.evictions:
        record = eviction.record
        table.add_row(
            record.id,
            record.chain_hex,
            _format_time(record),
            eviction.tier.value,
            eviction.reason.value,
        )
    console.print(table)


@app.command()
def status(
    ini: IniOption = None,
    save_dir: SaveDirOption = None,
    as_json: JsonOption = False,
) -> None:
    """Show how the saves of each chain are spread over the tiers.

    Reflects the state after applying the policy, without deleting anything.

    Examples:

        savekeeper status

        savekeeper status --json
    """
    result = _sweep(_load_settings(ini, save_dir), dry_run=True)
    chains = [result.registry.chain(chain_id) for chain_id in result.registry.chain_ids]

    if as_json:
        console.print_json(
            data={
                "chains": [
                    {
                        "chain_id": f"{chain.chain_id:08X}",
                        "tiers": {
                            tier.value: [record.id for record in chain.tier(tier)]
                            for tier in TIER_ORDER
                        },
                    }
                    for chain in chains
                ],
                "pending_evictions": len(result.evictions),
            }
        )
        return

    if not chains:
        console.print("No saves found.")
        return

    table = Table(title="Save chains")
    table.add_column("Chain")
    for tier in TIER_ORDER:
        table.add_column(tier.value.capitalize(), justify="right")
    table.add_column("Newest")
    table.add_column("Oldest")
    for chain in chains:
        records = chain.records
        table.add_row(
            f"{chain.chain_id:08X}",
            *(str(len(chain.tier(tier))) for tier in TIER_ORDER),
            _format_time(records[0]),
            _format_time(records[-1]),
        )
    console.print(table)

    if result.evictions:
        console.print(f"[yellow]{len(result.evictions)} saves pending eviction[/yellow]")


if __name__ == "__main__":
    app()
