from __future__ import annotations

from pathlib import Path

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from mapperkit.config import EngineSettings, ExecutorKind
from mapperkit.exceptions import MapperError, MapperKitError
from mapperkit.logging import configure_logging, get_logger
from mapperkit.mapping import Mapper
from mapperkit.providers import default_registry

app = typer.Typer(help="Report which mappers can run with the selected executor.")
console = Console()


def run_check(
    *,
    mapper: str | None,
    executor: ExecutorKind,
    docker_image: str | None,
    log_file: Path | None,
    verbose: bool,
    quiet: bool,
) -> int:
    try:
        configure_logging(verbose=verbose, quiet=quiet, log_file=log_file)
        logger = get_logger("mapperkit.check")

        registry = default_registry()
        providers = [registry.get(mapper)] if mapper else list(registry)
        settings = EngineSettings()

        table = Table(title="[bold]Mappers[/bold]", box=box.SIMPLE_HEAVY, expand=False)
        table.add_column("Mapper", style="bold cyan")
        table.add_column("Default version")
        table.add_column("Default flavor")
        table.add_column("Status")
        table.add_column("Binary version")

        available = 0
        for provider in providers:
            try:
                instance = Mapper(provider, settings).new_instance(executor_kind=executor, docker_image=docker_image)
            except MapperError as exc:
                logger.debug("%s unavailable: %s", provider.name, exc)
                status, version = "[red]missing[/red]", "-"
            else:
                available += 1
                status, version = "[green]ok[/green]", instance.binary_version() or "unknown"
            table.add_row(provider.name, provider.default_version, provider.default_flavor, status, version)

        console.print(table)
        logger.info("%d of %d mappers available", available, len(providers))
        return 0

    except MapperKitError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return exc.exit_code


@app.callback(invoke_without_command=True)
def check_callback(
    ctx: typer.Context,
    mapper: str | None = typer.Option(None, "--mapper", help="Only check this mapper."),
    executor: ExecutorKind = typer.Option(ExecutorKind.PATH, "--executor", help="Where mapper binaries come from."),
    docker_image: str | None = typer.Option(None, "--docker-image", help="Image used by the container executor."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write JSON logs to this file."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging."),
    quiet: bool = typer.Option(False, "--quiet", help="Only show errors."),
) -> None:
    if ctx.invoked_subcommand is not None:
        return

    exit_code = run_check(
        mapper=mapper,
        executor=executor,
        docker_image=docker_image,
        log_file=log_file,
        verbose=verbose,
        quiet=quiet,
    )
    raise typer.Exit(exit_code)
