from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from gitglass.config import GitglassConfig, load_config, split_address
from gitglass.errors import ConfigError
from gitglass.mirror_sync import SyncReport, sync_all
from gitglass.state_db import load_sync_records
from gitglass.status_service import RefChanges, record_sync_failure, record_sync_success
from gitglass.sync_ui import SyncProgressUI


LOG_LEVEL_ENV = "GITGLASS_LOG"

app = typer.Typer(help="Mirror git repositories and browse them over HTTP.")
console = Console()


def _setup_logging() -> None:
    level = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load(config_file: str | None) -> GitglassConfig | None:
    try:
        return load_config(config_file)
    except (FileNotFoundError, ConfigError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return None


def _render_ref_changes(slug: str, changes: RefChanges) -> None:
    if not changes.has_changes:
        console.print(f"[green]{slug}[/green]: up to date ({changes.ref_count} refs)")
        return
    console.print(
        Text.assemble(
            (slug, "bold"),
            f": {len(changes.new_refs)} new, {len(changes.updated_refs)} updated, "
            f"{len(changes.deleted_refs)} deleted ({changes.ref_count} refs)",
        )
    )
    for name in changes.new_refs:
        console.print(f"  [green]+ {name}[/green]")
    for name in changes.updated_refs:
        console.print(f"  [yellow]~ {name}[/yellow]")
    for name in changes.deleted_refs:
        console.print(f"  [red]- {name}[/red]")


async def _record_report(config: GitglassConfig, report: SyncReport) -> None:
    for outcome in report.outcomes:
        if outcome.state is not None:
            changes = await record_sync_success(config.state_db_path, outcome.state)
            _render_ref_changes(outcome.slug, changes)
        elif outcome.error is not None:
            await record_sync_failure(config.state_db_path, outcome.slug, outcome.error)
            console.print(f"[red]{outcome.slug}: {escape(str(outcome.error))}[/red]")
        elif outcome.skipped:
            console.print(f"[yellow]{outcome.slug}: skipped after earlier failure[/yellow]")


async def _update_repos_async(config: GitglassConfig, *, fail_fast: bool) -> int:
    if not config.repos:
        console.print("[yellow]No repositories configured.[/yellow]")
        return 0

    try:
        with SyncProgressUI(console=console) as ui:
            report = await asyncio.to_thread(sync_all, config, ui.observer, fail_fast=fail_fast)
    except KeyboardInterrupt:
        console.print("[yellow]Update interrupted.[/yellow] Mirrors that finished are up to date.")
        return 130

    await _record_report(config, report)
    console.print(
        f"Synced {len(report.succeeded)}/{len(report.outcomes)} repositories"
        + (f", {len(report.failed)} failed" if report.failed else "")
    )
    return 0 if report.ok else 1


@app.command("update-repos")
def update_repos(
    config_file: str | None = typer.Option(
        None,
        "--config",
        help="Path to gitglass.toml. Defaults to $GITGLASS_CONFIG or ./gitglass.toml.",
    ),
    fail_fast: bool = typer.Option(
        False,
        "--fail-fast",
        help="Stop at the first repository that fails instead of continuing with the rest.",
    ),
) -> None:
    """Clone or fetch every configured mirror."""
    _setup_logging()
    config = _load(config_file)
    if config is None:
        raise typer.Exit(code=1)
    raise typer.Exit(code=asyncio.run(_update_repos_async(config, fail_fast=fail_fast)))


async def _status_async(config: GitglassConfig) -> int:
    records = await load_sync_records(config.state_db_path)

    table = Table(title="Mirror status")
    table.add_column("Repository")
    table.add_column("Status")
    table.add_column("Last attempt (UTC)")
    table.add_column("HEAD")
    table.add_column("Refs", justify="right")
    table.add_column("Error")

    for slug, repo in sorted(config.repos.items()):
        record = records.get(slug)
        if record is None:
            table.add_row(slug, "[yellow]never synced[/yellow]", "", "", "", "")
            continue
        synced_at = datetime.fromtimestamp(record.synced_at, tz=timezone.utc)
        table.add_row(
            slug,
            "[green]ok[/green]" if record.ok else "[red]failed[/red]",
            synced_at.strftime("%Y-%m-%d %H:%M:%S"),
            (record.head_id or "")[:7] or f"({repo.head} missing)",
            str(record.ref_count),
            escape(record.error or ""),
        )

    console.print(table)
    return 0


@app.command()
def status(
    config_file: str | None = typer.Option(None, "--config", help="Path to gitglass.toml."),
) -> None:
    """Show the outcome of the last sync for each configured mirror."""
    config = _load(config_file)
    if config is None:
        raise typer.Exit(code=1)
    raise typer.Exit(code=asyncio.run(_status_async(config)))


@app.command()
def web(
    config_file: str | None = typer.Option(None, "--config", help="Path to gitglass.toml."),
    address: str | None = typer.Option(
        None,
        "--address",
        help="host:port to listen on. Overrides [server].address.",
    ),
) -> None:
    """Serve the mirrors over HTTP."""
    import uvicorn

    from gitglass.web import create_app

    _setup_logging()
    config = _load(config_file)
    if config is None:
        raise typer.Exit(code=1)

    try:
        host, port = split_address(address) if address else (config.host, config.port)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Serving {len(config.repos)} repositories on http://{host}:{port}/")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
