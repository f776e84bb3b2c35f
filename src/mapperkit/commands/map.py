from __future__ import annotations

import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import typer
from rich.console import Console

from mapperkit.bio.fastq import FastqReader
from mapperkit.config import ExecutorKind, MapConfig, merge_command_config
from mapperkit.engine.counters import MAPPER_INPUT_READS_COUNTER, Counters
from mapperkit.engine.process import MapperProcess
from mapperkit.exceptions import MapperIOError, MapperKitError, MapperKitUsageError
from mapperkit.logging import configure_logging, get_logger
from mapperkit.mapping import Mapper

app = typer.Typer(help="Map FASTQ reads against a prebuilt index archive and write SAM.")
console = Console(stderr=True)


def default_index_dir(index_archive: Path) -> Path:
    return index_archive.parent / index_archive.stem


def _feed_reads(process: MapperProcess, r1: Path, r2: Path | None) -> None:
    with FastqReader(r1) as reads1:
        if r2 is None:
            process.write_reads(reads1)
            return
        with FastqReader(r2) as reads2:
            try:
                for read1, read2 in zip(reads1, reads2, strict=True):
                    process.write_entry1(read1)
                    process.write_entry2(read2)
            except ValueError as exc:
                raise MapperIOError(f"{r1} and {r2} do not hold the same number of reads") from exc
    process.close_entries_writer()


def _copy_to_stdout(process: MapperProcess) -> None:
    stdout = typer.get_binary_stream("stdout")
    with process.stdout as stream:
        shutil.copyfileobj(stream, stdout)
    stdout.flush()


def run_map(
    *,
    config_path: Path | None,
    mapper: str | None,
    mapper_version: str | None,
    flavor: str | None,
    executor: ExecutorKind | None,
    docker_image: str | None,
    index_archive: Path | None,
    index_dir: Path | None,
    r1: Path | None,
    r2: Path | None,
    output: Path | None,
    stderr_file: Path | None,
    fastq_format: str | None,
    mapper_arguments: str | None,
    multiple_instances: bool | None,
    file_mode: bool | None,
    threads: int | None,
    log_file: Path | None,
    verbose: bool | None,
    quiet: bool | None,
) -> int:
    try:
        cfg, engine = merge_command_config(
            config_path=config_path,
            section="map",
            model_cls=MapConfig,
            cli_overrides={
                "mapper": mapper,
                "mapper_version": mapper_version,
                "flavor": flavor,
                "executor": executor,
                "docker_image": docker_image,
                "index_archive": index_archive,
                "index_dir": index_dir,
                "r1": r1,
                "r2": r2,
                "output": output,
                "stderr_file": stderr_file,
                "fastq_format": fastq_format,
                "mapper_arguments": mapper_arguments,
                "multiple_instances": multiple_instances,
                "file_mode": file_mode,
                "threads": threads,
                "log_file": log_file,
                "verbose": verbose,
                "quiet": quiet,
            },
        )
        configure_logging(verbose=cfg.verbose, quiet=cfg.quiet, log_file=cfg.log_file)
        logger = get_logger("mapperkit.map")

        if cfg.index_archive is None:
            raise MapperKitUsageError("Missing index archive. Provide --index or set map.index_archive in config.")
        if cfg.r1 is None:
            raise MapperKitUsageError("Missing reads. Provide --r1 or set map.r1 in config.")

        instance = Mapper.from_name(cfg.mapper, settings=engine).new_instance(
            cfg.mapper_version,
            cfg.flavor,
            cfg.executor,
            cfg.docker_image,
        )
        index = instance.new_mapper_index(cfg.index_archive, cfg.index_dir or default_index_dir(cfg.index_archive))
        counters = Counters()

        if cfg.file_mode:
            file_mapping = index.new_file_mapping(
                cfg.fastq_format,
                cfg.mapper_arguments,
                cfg.threads,
                cfg.multiple_instances,
            )
            if cfg.r2 is None:
                process = file_mapping.map_se(cfg.r1, cfg.stderr_file)
            else:
                process = file_mapping.map_pe(cfg.r1, cfg.r2, cfg.stderr_file)
        else:
            entry_mapping = index.new_entry_mapping(
                cfg.fastq_format,
                cfg.mapper_arguments,
                cfg.threads,
                cfg.multiple_instances,
                incrementer=counters,
            )
            if cfg.r2 is None:
                process = entry_mapping.map_se(cfg.stderr_file)
            else:
                process = entry_mapping.map_pe(cfg.stderr_file)
        logger.info("Running %s", process.command_line)

        try:
            if cfg.output is not None:
                process.to_file(cfg.output)
                if not process.file_mode:
                    _feed_reads(process, cfg.r1, cfg.r2)
            else:
                with ThreadPoolExecutor(max_workers=1) as pool:
                    drain = pool.submit(_copy_to_stdout, process)
                    try:
                        if not process.file_mode:
                            _feed_reads(process, cfg.r1, cfg.r2)
                    except BaseException:
                        # Unblocks the stdout copy before the pool joins it
                        process.cancel()
                        raise
                    drain.result()
            process.wait_for()
        except BaseException:
            process.cancel()
            process.remove_temporary_files()
            raise

        if not process.file_mode:
            logger.info(
                "%d reads mapped with %s",
                counters.get(instance.name, MAPPER_INPUT_READS_COUNTER),
                instance.name,
            )
        return 0

    except MapperKitError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return exc.exit_code
    except Exception as exc:  # pragma: no cover - defensive catch-all
        get_logger("mapperkit.map").exception("Unhandled map error")
        console.print(f"[red]Unexpected error:[/red] {exc}")
        return 1


@app.callback(invoke_without_command=True)
def map_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML config file."),
    mapper: str | None = typer.Option(None, "--mapper", help="Mapper name (bwa, bowtie, bowtie2, star, gsnap, minimap2)."),
    mapper_version: str | None = typer.Option(None, "--mapper-version", help="Mapper version."),
    flavor: str | None = typer.Option(None, "--flavor", help="Mapper flavor (e.g. aln, mem, large-index)."),
    executor: ExecutorKind | None = typer.Option(None, "--executor", help="Where mapper binaries come from."),
    docker_image: str | None = typer.Option(None, "--docker-image", help="Image used by the container executor."),
    index_archive: Path | None = typer.Option(None, "--index", help="Zipped mapper index."),
    index_dir: Path | None = typer.Option(
        None,
        "--index-dir",
        help="Directory the index is unzipped into (default: next to the archive).",
    ),
    r1: Path | None = typer.Option(None, "--r1", help="FASTQ file of the first mates (or single-end reads)."),
    r2: Path | None = typer.Option(None, "--r2", help="FASTQ file of the second mates."),
    output: Path | None = typer.Option(None, "--output", "-o", help="SAM output file (default: stdout)."),
    stderr_file: Path | None = typer.Option(None, "--stderr-file", help="Append mapper stderr to this file."),
    fastq_format: str | None = typer.Option(None, "--fastq-format", help="Quality encoding of the reads."),
    mapper_arguments: str | None = typer.Option(
        None,
        "--mapper-arguments",
        help="Arguments passed to the mapper instead of its defaults.",
    ),
    multiple_instances: bool | None = typer.Option(
        None,
        "--multiple-instances",
        help="Share a memory-mapped index between concurrent mappers.",
    ),
    file_mode: bool | None = typer.Option(
        None,
        "--file-mode",
        help="Let the mapper read the FASTQ files directly instead of streaming them.",
    ),
    threads: int | None = typer.Option(None, "--threads", min=1, help="Mapper threads."),
    log_file: Path | None = typer.Option(None, "--log-file", help="Write JSON logs to this file."),
    verbose: bool | None = typer.Option(None, "--verbose", help="Enable verbose logging."),
    quiet: bool | None = typer.Option(None, "--quiet", help="Only show errors."),
) -> None:
    if ctx.invoked_subcommand is not None:
        return

    exit_code = run_map(
        config_path=config,
        mapper=mapper,
        mapper_version=mapper_version,
        flavor=flavor,
        executor=executor,
        docker_image=docker_image,
        index_archive=index_archive,
        index_dir=index_dir,
        r1=r1,
        r2=r2,
        output=output,
        stderr_file=stderr_file,
        fastq_format=fastq_format,
        mapper_arguments=mapper_arguments,
        multiple_instances=multiple_instances,
        file_mode=file_mode,
        threads=threads,
        log_file=log_file,
        verbose=verbose,
        quiet=quiet,
    )
    raise typer.Exit(exit_code)
