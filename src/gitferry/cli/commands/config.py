"""Configuration management commands."""

import typer
from rich.console import Console
from rich.table import Table

from gitferry.config import CONFIG_KEYS, get_config_file, load_config, set_config_value

config_app = typer.Typer(
    name="config",
    help="Manage default sync settings",
)
console = Console()


@config_app.command("show")
def config_show() -> None:
    """Display current configuration."""
    config = load_config()

    if not config:
        console.print("[yellow]No configuration found.[/yellow]")
        console.print(f"Config file: [dim]{get_config_file()}[/dim]")
        return

    table = Table(title="gitferry Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    for key, value in sorted(config.items()):
        table.add_row(key, str(value))

    console.print(table)
    console.print(f"\nConfig file: [dim]{get_config_file()}[/dim]")


@config_app.command("get")
def config_get(
    key: str = typer.Argument(..., help="Configuration key to read"),
) -> None:
    """Print a single configuration value."""
    value = load_config().get(key)
    if value is None:
        console.print(f"[yellow]{key} is not set.[/yellow]")
        raise typer.Exit(code=1)
    console.print(str(value))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key to set"),
    value: str = typer.Argument(..., help="Value to set"),
) -> None:
    """Set a configuration value.

    Examples:
        gitferry config set ref_prefixes refs/heads/,refs/tags/
        gitferry config set concurrent_discovery true
    """
    try:
        set_config_value(key, value)
    except KeyError:
        console.print(f"[red]Unknown setting {key}.[/red] Known settings: {', '.join(CONFIG_KEYS)}")
        raise typer.Exit(code=1) from None
    except ValueError as e:
        console.print(f"[red]Invalid value for {key}:[/red] {e}")
        raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/green] Set [cyan]{key}[/cyan] = [green]{value}[/green]")
    console.print(f"Config file: [dim]{get_config_file()}[/dim]")
