"""Main CLI application using Typer."""

import typer
from rich.console import Console

from gitferry import __version__
from gitferry.cli.commands.config import config_app
from gitferry.cli.commands.sync import sync

app = typer.Typer(
    name="gitferry",
    help="gitferry - Copy refs between two git smart-HTTP remotes",
    add_completion=False,
)
console = Console()

# Register subcommands
app.add_typer(config_app, name="config")
app.command("sync")(sync)


def version_callback(value: bool) -> None:
    """Show version information."""
    if value:
        console.print(f"gitferry version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    )
) -> None:
    """gitferry CLI - relay git objects from one remote to another."""
    pass


if __name__ == "__main__":
    app()
