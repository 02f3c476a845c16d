"""The ``gitferry sync`` command."""

import logging

import anyio
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gitferry.auth import Credentials, StaticCredentials
from gitferry.cli.client import create_client
from gitferry.config import SyncSettings, load_settings
from gitferry.errors import PushRejected, SyncError
from gitferry.models import ProgressEvent, SyncResult
from gitferry.sync.orchestrator import SyncOrchestrator

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _parse_headers(values: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _render_result(result: SyncResult) -> None:
    """Render the per-ref outcome table."""
    table = Table(title="Ref Updates", show_header=True, header_style="bold magenta")
    table.add_column("Ref", style="cyan")
    table.add_column("Old", style="dim")
    table.add_column("New", style="white")
    table.add_column("Status")

    for command in result.commands:
        status = result.per_ref_status.get(command.ref_name, "")
        status_display = "[green]ok[/green]" if status == "ok" else f"[red]{status}[/red]"
        old = "(new)" if command.is_create else command.old_oid[:12]
        table.add_row(command.ref_name, old, command.new_oid[:12], status_display)

    console.print(table)


def sync(
    source: str = typer.Argument(..., help="Smart-HTTP URL to fetch from"),
    target: str = typer.Argument(..., help="Smart-HTTP URL to push to"),
    header: list[str] | None = typer.Option(
        None, "--header", "-H", help="Extra request header 'Name: value' (repeatable)"
    ),
    username: str | None = typer.Option(None, "--username", "-u", help="Basic-auth user name"),
    password: str | None = typer.Option(
        None, "--password", envvar="GITFERRY_PASSWORD", help="Basic-auth password or token"
    ),
    ref: list[str] | None = typer.Option(None, "--ref", help="Synchronize only this ref (repeatable)"),
    prefix: list[str] | None = typer.Option(
        None, "--prefix", help="Synchronize refs under this prefix (repeatable)"
    ),
    concurrent_discovery: bool | None = typer.Option(
        None,
        "--concurrent-discovery/--sequential-discovery",
        help="Discover both remotes at the same time",
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Abort the whole run after N seconds"),
    verbose: bool = typer.Option(False, "--verbose", help="Log protocol detail"),
) -> None:
    """Push every ref the target is missing straight from the source."""
    _configure_logging(verbose)
    headers = _parse_headers(header or [])
    settings = load_settings(
        refs=tuple(ref) if ref else None,
        ref_prefixes=tuple(prefix) if prefix else None,
        concurrent_discovery=concurrent_discovery,
        timeout=timeout,
    )
    auth = None
    if username is not None or password is not None:
        auth = StaticCredentials(Credentials(username=username, password=password))

    console.print(f"[cyan]Synchronizing {source} -> {target}...[/cyan]")
    try:
        result = anyio.run(_sync_async, source, target, headers, auth, settings, verbose)
    except PushRejected as e:
        console.print("[red]✗ Target rejected the push.[/red]")
        _render_result(e.result)
        console.print(f"[dim]{e}[/dim]")
        raise typer.Exit(code=1) from e
    except SyncError as e:
        console.print(f"[red]✗ Sync failed:[/red] {e}")
        if e.state:
            console.print(f"[dim]Failed during {e.state}[/dim]")
        raise typer.Exit(code=1) from e

    if result.is_noop:
        console.print("[green]Target is already up to date.[/green]")
        return

    console.print(f"[green]✓ Updated {len(result.commands)} refs.[/green]")
    _render_result(result)
    console.print(f"  Pack: {result.pack_size} bytes, checksum {result.pack_checksum}")


async def _sync_async(
    source: str,
    target: str,
    headers: dict[str, str],
    auth: StaticCredentials | None,
    settings: SyncSettings,
    verbose: bool,
) -> SyncResult:
    """Run one synchronization with a fresh client."""

    def on_progress(event: ProgressEvent) -> None:
        if verbose:
            err_console.print(f"[dim]{event.phase}: {event.loaded}/{event.total}[/dim]")

    async with create_client(settings) as http:
        orchestrator = SyncOrchestrator(
            http,
            source,
            target,
            headers=headers,
            auth=auth,
            on_progress=on_progress,
            settings=settings,
        )
        return await orchestrator.run()
