"""refgraph CLI - typer application entry point."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from refgraph.codec import deserialize, serialize
from refgraph.config import ConfigError, RefgraphConfig, load_config
from refgraph.errors import RefgraphError
from refgraph.observability import close_file_logging, configure_logging, get_logger
from refgraph.store import ObjectGraphStore

app = typer.Typer(
    name="refgraph",
    help="refgraph: reference-preserving graph codec and event-sourced graph store.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

log = get_logger(__name__)

# Global state set by the callback
_config = RefgraphConfig()


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Configuration file (default: ./refgraph.yaml if present).",
            envvar="REFGRAPH_CONFIG",
        ),
    ] = None,
) -> None:
    """refgraph: reference-preserving graph codec and event-sourced graph store."""
    global _config
    try:
        _config = load_config(config)
    except ConfigError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    verbosity = max(verbose, _config.verbosity)
    if _config.log_dir is not None:
        configure_logging(verbosity=verbosity, log_to_file=True, log_dir=_config.log_dir)
    else:
        configure_logging(verbosity=verbosity)


def _prefix(override: str | None) -> str:
    return _config.effective_prefix if override is None else override


def _fail(error: RefgraphError) -> typer.Exit:
    """Print a library error as feedback and build the exit to raise."""
    err_console.print(Markdown(error.to_feedback()))
    log.debug("command_failed", error=type(error).__name__, detail=str(error))
    return typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from refgraph import __version__

    console.print(f"refgraph v{__version__}")


@app.command()
def check(
    file: Annotated[Path, typer.Argument(help="Encoded document to check.", exists=True)],
    prefix: Annotated[
        str | None, typer.Option("--prefix", "-p", help="Marker prefix override.")
    ] = None,
) -> None:
    """Decode a document, re-encode it and report whether the round trip is exact.

    No activation hook is installed, so substituted records decode as plain
    records and lose their type tag. A document holding them is reported as
    differing.
    """
    text = file.read_text(encoding="utf-8")
    marker_prefix = _prefix(prefix)
    try:
        decoded = deserialize(text, prefix=marker_prefix)
        encoded = serialize(decoded, prefix=marker_prefix)
    except RefgraphError as e:
        raise _fail(e) from e
    finally:
        close_file_logging()

    if encoded == text.strip():
        console.print(f"[green]✓[/green] {file.name}: round trip is idempotent")
        return

    console.print(f"[red]✗[/red] {file.name}: re-encoded text differs")
    console.print(encoded, markup=False, highlight=False)
    raise typer.Exit(1)


@app.command()
def replay(
    snapshot: Annotated[Path, typer.Argument(help="Store snapshot document.", exists=True)],
    batches: Annotated[
        list[Path], typer.Argument(help="Event batch files, applied in order.", exists=True)
    ],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write the resulting snapshot here.")
    ] = None,
    prefix: Annotated[
        str | None, typer.Option("--prefix", "-p", help="Marker prefix override.")
    ] = None,
) -> None:
    """Load a store snapshot and apply event batches to it."""
    try:
        store = ObjectGraphStore.from_snapshot(
            snapshot.read_text(encoding="utf-8"), prefix=_prefix(prefix)
        )
        start = store.transaction_number
        for batch in batches:
            store.apply(batch.read_text(encoding="utf-8"))
            log.info("batch_file_applied", file=str(batch), transaction=store.transaction_number)
        if output is not None:
            output.write_text(store.to_snapshot(), encoding="utf-8")
    except RefgraphError as e:
        raise _fail(e) from e
    finally:
        close_file_logging()

    table = Table(title="Replay")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Transactions", f"{start} → {store.transaction_number}")
    table.add_row("Properties", str(len(store.property_names)))
    table.add_row("Live objects", str(len(store)))
    console.print(table)
    console.print(f"transaction {store.transaction_number}")
    if output is not None:
        console.print(f"Snapshot written to {output}")
