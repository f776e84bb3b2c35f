from __future__ import annotations

import platform
import sys

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mapperkit import __version__
from mapperkit.commands import check, index, map

# SAM goes to stdout when `map` has no output file
console = Console(stderr=True)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="mapperkit: run short-read aligners (BWA, Bowtie, Bowtie2, STAR, GSNAP, Minimap2) behind one interface.",
)

app.add_typer(check.app, name="check", help="Check which mappers are available.")
app.add_typer(index.app, name="index", help="Build a zipped mapper index.")
app.add_typer(map.app, name="map", help="Map FASTQ reads and write SAM.")


def _print_startup_intro(command_name: str) -> None:
    banner = Panel(
        f"[bold cyan]mapperkit {__version__}[/bold cyan]\n[white]Short-read mapper execution engine[/white]",
        title="[bold]CLI Start[/bold]",
        border_style="cyan",
        expand=False,
    )
    console.print(banner)

    stats = Table(
        title="[bold]Session Summary[/bold]",
        box=box.SIMPLE_HEAVY,
        show_header=False,
        expand=False,
    )
    stats.add_column("Key", style="bold cyan")
    stats.add_column("Value", style="white")
    stats.add_row("Command", command_name)
    stats.add_row("Python", sys.version.split()[0])
    stats.add_row("Platform", f"{platform.system()} {platform.release()}")
    console.print(stats)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show mapperkit version and exit."),
) -> None:
    if version:
        typer.echo(f"mapperkit {__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand:
        _print_startup_intro(ctx.invoked_subcommand)
