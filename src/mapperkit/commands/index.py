from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from mapperkit.config import ExecutorKind, IndexConfig, merge_command_config
from mapperkit.exceptions import MapperKitError, MapperKitUsageError
from mapperkit.logging import configure_logging, get_logger
from mapperkit.mapping import Mapper

app = typer.Typer(help="Build a zipped mapper index from a genome FASTA file.")
console = Console()


def default_archive(genome: Path, mapper_name: str) -> Path:
    stem = genome.name
    for suffix in (".gz", ".fasta", ".fa", ".fna"):
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
    return genome.parent / f"{stem}.{mapper_name.lower()}.zip"


def run_index(
    *,
    config_path: Path | None,
    mapper: str | None,
    mapper_version: str | None,
    flavor: str | None,
    executor: ExecutorKind | None,
    docker_image: str | None,
    genome: Path | None,
    output: Path | None,
    indexer_arguments: str | None,
    threads: int | None,
    log_file: Path | None,
    verbose: bool | None,
    quiet: bool | None,
) -> int:
    try:
        cfg, engine = merge_command_config(
            config_path=config_path,
            section="index",
            model_cls=IndexConfig,
            cli_overrides={
                "mapper": mapper,
                "mapper_version": mapper_version,
                "flavor": flavor,
                "executor": executor,
                "docker_image": docker_image,
                "genome": genome,
                "output": output,
                "indexer_arguments": indexer_arguments,
                "threads": threads,
                "log_file": log_file,
                "verbose": verbose,
                "quiet": quiet,
            },
        )
        configure_logging(verbose=cfg.verbose, quiet=cfg.quiet, log_file=cfg.log_file)
        logger = get_logger("mapperkit.index")

        if cfg.genome is None:
            raise MapperKitUsageError("Missing genome. Provide --genome or set index.genome in config.")
        if not cfg.genome.is_file():
            raise MapperKitUsageError(f"Genome file does not exist: {cfg.genome}")

        instance = Mapper.from_name(cfg.mapper, settings=engine).new_instance(
            cfg.mapper_version,
            cfg.flavor,
            cfg.executor,
            cfg.docker_image,
        )
        archive = cfg.output or default_archive(cfg.genome, instance.name)
        instance.make_archive_index(cfg.genome, archive, cfg.indexer_arguments, cfg.threads)

        logger.info("%s index written to %s", instance.name, archive)
        console.print(f"[green]Index written:[/green] {archive}")
        return 0

    except MapperKitError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return exc.exit_code
    except Exception as exc:  # pragma: no cover - defensive catch-all
        get_logger("mapperkit.index").exception("Unhandled index error")
        console.print(f"[red]Unexpected error:[/red] {exc}")
        return 1


@app.callback(invoke_without_command=True)
def index_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML config file."),
    mapper: str | None = typer.Option(None, "--mapper", help="Mapper name."),
    mapper_version: str | None = typer.Option(None, "--mapper-version", help="Mapper version."),
    flavor: str | None = typer.Option(None, "--flavor", help="Mapper flavor."),
    executor: ExecutorKind | None = typer.Option(None, "--executor", help="Where mapper binaries come from."),
    docker_image: str | None = typer.Option(None, "--docker-image", help="Image used by the container executor."),
    genome: Path | None = typer.Option(None, "--genome", help="Genome FASTA file (optionally gzipped)."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Index archive to write."),
    indexer_arguments: str | None = typer.Option(
        None,
        "--indexer-arguments",
        help="Extra arguments passed to the indexer.",
    ),
    threads: int | None = typer.Option(None, "--threads", min=1, help="Indexer threads."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write JSON logs to this file."),
    verbose: bool | None = typer.Option(None, "--verbose", help="Enable verbose logging."),
    quiet: bool | None = typer.Option(None, "--quiet", help="Only show errors."),
) -> None:
    if ctx.invoked_subcommand is not None:
        return

    exit_code = run_index(
        config_path=config,
        mapper=mapper,
        mapper_version=mapper_version,
        flavor=flavor,
        executor=executor,
        docker_image=docker_image,
        genome=genome,
        output=output,
        indexer_arguments=indexer_arguments,
        threads=threads,
        log_file=log_file,
        verbose=verbose,
        quiet=quiet,
    )
    raise typer.Exit(exit_code)
