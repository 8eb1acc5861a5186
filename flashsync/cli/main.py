"""
CLI entry point for flashsync.
"""

# Standard library imports
import logging
import os
from pathlib import Path
from typing import Optional

# Third-party imports
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

# Local application imports
from flashsync.anki import AnkiConnectClient
from flashsync.anki.actions import fetch_registry
from flashsync.change_detector import filter_changed
from flashsync.constants import (
    DEFAULT_SETTINGS_FILENAME,
    DEFAULT_STATE_DIRNAME,
    DEFAULT_STATE_FILENAME,
)
from flashsync.db import SyncStateStore
from flashsync.engine import SyncEngine
from flashsync.exceptions import (
    AnkiConnectError,
    AnkiConnectionError,
    SettingsError,
    StateStoreError,
)
from flashsync.models import SyncReport
from flashsync.settings import load_settings, write_default_settings
from flashsync.settings_models import SyncSettings
from flashsync.vault import Vault


console = Console()

app = typer.Typer(
    name="flashsync",
    help="Flashsync: keep Markdown flashcards in sync with Anki.",
    add_completion=False,
    rich_markup_mode="markdown",
)


@app.callback()
def _configure_logging(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug logging."
    ),
):
    """Install a rich log handler on the root logger."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Helpers for resolving paths (FLASHSYNC_* envvars)
# ---------------------------------------------------------------------------


def _resolve_vault_path(vault: Optional[Path]) -> Path:
    """Resolve the vault from CLI flag or FLASHSYNC_VAULT envvar. Exits on
    missing."""
    if vault is None:
        env_val = os.environ.get("FLASHSYNC_VAULT")
        if not env_val:
            console.print(
                "[bold red]Error: --vault is required "
                "(or set the FLASHSYNC_VAULT environment variable).[/bold red]"
            )
            raise typer.Exit(code=1)
        vault = Path(env_val)
    if not vault.is_dir():
        console.print(
            f"[bold red]Error: vault directory '{vault}' does not exist.[/bold red]"
        )
        raise typer.Exit(code=1)
    return vault


def _resolve_db_path(db: Optional[Path], vault: Path) -> Path:
    return db if db is not None else vault / DEFAULT_STATE_DIRNAME / DEFAULT_STATE_FILENAME


def _resolve_config_path(config: Optional[Path], vault: Path) -> Path:
    return config if config is not None else vault / DEFAULT_SETTINGS_FILENAME


def _load_settings_or_exit(config_path: Path, anki_url: Optional[str]) -> SyncSettings:
    try:
        settings = load_settings(config_path)
    except SettingsError as e:
        console.print(f"[bold red]Settings error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    if anki_url:
        settings = settings.model_copy(update={"anki_url": anki_url})
    return settings


# Common typer options reused across commands
_vault_option = typer.Option(  # noqa: B008
    None,
    "--vault",
    help="Vault directory containing Markdown notes. "
    "Falls back to FLASHSYNC_VAULT env var.",
    envvar="FLASHSYNC_VAULT",
)

_db_option = typer.Option(  # noqa: B008
    None,
    "--db",
    help="Path to the sync state database. "
    "Defaults to <vault>/.flashsync/state.db.",
    envvar="FLASHSYNC_DB",
)

_config_option = typer.Option(  # noqa: B008
    None,
    "--config",
    help="Settings file. Defaults to <vault>/flashsync.yaml.",
    envvar="FLASHSYNC_CONFIG",
)

_anki_url_option = typer.Option(  # noqa: B008
    None,
    "--anki-url",
    help="AnkiConnect URL, overriding the settings file.",
    envvar="FLASHSYNC_ANKI_URL",
)


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def _display_report(cons: Console, report: SyncReport):
    """Print the pass summary table followed by any warnings."""
    table = Table(title="Sync Summary", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Documents scanned", str(len(report.scanned)))
    table.add_row("Notes created", str(report.created))
    table.add_row("Notes updated", str(report.updated))
    table.add_row("Notes deleted", str(report.deleted))
    table.add_row("Failed requests", str(report.failed))
    table.add_row("Media uploaded", str(report.media_uploaded))
    table.add_row("Files written", str(len(report.written)))
    cons.print(table)
    for warning in report.warnings:
        cons.print(f"[yellow]Warning: {warning}[/yellow]")
    if report.failed_documents:
        cons.print(
            "[yellow]Will retry on next sync: "
            f"{', '.join(report.failed_documents)}[/yellow]"
        )


@app.command()
def sync(
    vault: Optional[Path] = _vault_option,
    db: Optional[Path] = _db_option,
    config: Optional[Path] = _config_option,
    anki_url: Optional[str] = _anki_url_option,
):
    """Synchronize changed documents of the vault with Anki."""
    vault_path = _resolve_vault_path(vault)
    settings = _load_settings_or_exit(
        _resolve_config_path(config, vault_path), anki_url
    )
    source = Vault(vault_path, settings.vault_name)
    try:
        with SyncStateStore(_resolve_db_path(db, vault_path)) as store, \
                AnkiConnectClient(settings.anki_url) as client:
            engine = SyncEngine(client, source, store, settings)
            report, _ = engine.run()
    except AnkiConnectionError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except AnkiConnectError as e:
        console.print(f"[bold red]AnkiConnect error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except StateStoreError as e:
        console.print(f"[bold red]A state database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    if not report.scanned:
        console.print("[green]All documents are up to date.[/green]")
        return
    _display_report(console, report)


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


@app.command()
def status(
    vault: Optional[Path] = _vault_option,
    db: Optional[Path] = _db_option,
):
    """List documents that the next sync would scan."""
    vault_path = _resolve_vault_path(vault)
    try:
        with SyncStateStore(_resolve_db_path(db, vault_path), read_only=True) as store:
            state = store.load()
    except StateStoreError as e:
        console.print(f"[bold red]A state database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    changed = filter_changed(Vault(vault_path).list_documents(), state)
    if not changed:
        console.print("[green]All documents are up to date.[/green]")
        return
    table = Table(title="Pending Documents")
    table.add_column("Path", style="cyan")
    table.add_column("State", style="yellow")
    for document in changed:
        table.add_row(
            document.path,
            "modified" if document.path in state.fingerprints else "new",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Settings and schema commands
# ---------------------------------------------------------------------------


@app.command("init-config")
def init_config(
    vault: Optional[Path] = _vault_option,
    config: Optional[Path] = _config_option,
    anki_url: Optional[str] = _anki_url_option,
    force: bool = typer.Option(
        False, "--force", help="Overwrite an existing settings file."
    ),
):
    """Write a default settings file, prefilled with Anki's note types when
    Anki is running."""
    vault_path = _resolve_vault_path(vault)
    config_path = _resolve_config_path(config, vault_path)
    if config_path.exists() and not force:
        console.print(
            f"[yellow]{config_path} already exists. Use --force to overwrite.[/yellow]"
        )
        raise typer.Exit(code=1)

    registry = None
    try:
        with AnkiConnectClient(anki_url or SyncSettings().anki_url) as client:
            registry = fetch_registry(client)
    except AnkiConnectError as e:
        console.print(
            f"[yellow]Could not read note types from Anki ({e}); "
            "writing settings without them.[/yellow]"
        )

    write_default_settings(config_path, registry)
    console.print(f"[bold green]Settings written to {config_path}[/bold green]")


@app.command("refresh-schemas")
def refresh_schemas(
    vault: Optional[Path] = _vault_option,
    db: Optional[Path] = _db_option,
    config: Optional[Path] = _config_option,
    anki_url: Optional[str] = _anki_url_option,
):
    """Fetch note types and their fields from Anki again."""
    vault_path = _resolve_vault_path(vault)
    settings = _load_settings_or_exit(
        _resolve_config_path(config, vault_path), anki_url
    )
    try:
        with SyncStateStore(_resolve_db_path(db, vault_path)) as store, \
                AnkiConnectClient(settings.anki_url) as client:
            engine = SyncEngine(client, Vault(vault_path), store, settings)
            engine.check_connection()
            registry = engine.load_registry(refresh=True)
    except AnkiConnectError as e:
        console.print(f"[bold red]Error: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    except StateStoreError as e:
        console.print(f"[bold red]A state database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e

    table = Table(title="Note Types")
    table.add_column("Note Type", style="cyan")
    table.add_column("Fields", style="magenta")
    for name, fields in sorted(registry.items()):
        table.add_row(name, ", ".join(fields))
    console.print(table)


@app.command()
def reset(
    vault: Optional[Path] = _vault_option,
    db: Optional[Path] = _db_option,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Bypass confirmation prompt."
    ),
):
    """Forget all sync state so that every document is scanned again."""
    vault_path = _resolve_vault_path(vault)
    if not yes:
        confirmed = typer.confirm(
            "Are you sure you want to forget all stored fingerprints "
            "and uploaded media?"
        )
        if not confirmed:
            console.print("Reset cancelled.")
            raise typer.Exit()

    try:
        with SyncStateStore(_resolve_db_path(db, vault_path)) as store:
            store.reset()
    except StateStoreError as e:
        console.print(f"[bold red]A state database error occurred: {e}[/bold red]")
        raise typer.Exit(code=1) from e
    console.print("[bold green]Sync state cleared.[/bold green]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """
    Run the CLI application.

    If an unexpected exception occurs, print a bold red error message to the console and exit the process with status code 1.
    """
    try:
        app()
    except Exception as e:
        console.print(f"[bold red]UNEXPECTED ERROR: {e}[/bold red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
