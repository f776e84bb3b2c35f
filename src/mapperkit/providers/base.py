from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Protocol, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.exceptions import MapperConfigurationError, MapperError
from mapperkit.executors.base import MapperExecutor
from mapperkit.logging import get_logger
from mapperkit.utils.io import unique_file_by_extension

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance

logger = get_logger("providers")

STANDARD_FLAVOR = "standard"
LARGE_INDEX_FLAVOR = "large-index"


class MapperProvider(Protocol):
    """What the engine needs to know about one aligner."""

    name: str
    default_version: str
    default_flavor: str
    archive_format: str
    default_mapper_arguments: str
    multiple_instances_allowed: bool
    compressed_index: bool
    splits_allowed: bool
    index_generator_only: bool

    def indexer_executables(self, instance: MapperInstance) -> list[str]: ...

    def mapper_executable(self, instance: MapperInstance) -> str: ...

    def flavor_exists(self, instance: MapperInstance) -> bool: ...

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]: ...

    def binary_version(self, instance: MapperInstance) -> str | None: ...

    def map_se(
        self,
        mapping: BaseMapping,
        input_file: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess: ...

    def map_pe(
        self,
        mapping: BaseMapping,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess: ...


def normalize_flavor(flavor: str | None) -> str | None:
    if flavor is None:
        return None
    return flavor.strip().lower() or None


def version_tuple(version: str) -> tuple[int, ...]:
    """Numeric components of a version string: `"2.7.2d"` gives `(2, 7, 2)`."""

    return tuple(int(part) for part in re.findall(r"\d+", version))


def version_at_least(version: str, minimum: str) -> bool:
    return version_tuple(version) >= version_tuple(minimum)


def index_prefix(mapper_name: str, index_dir: Path, extension: str) -> Path:
    """Path of the index files without `extension`, e.g. `<dir>/genome`."""

    index_file = unique_file_by_extension(index_dir, extension, label=mapper_name)
    return index_file.with_name(index_file.name[: -len(extension)])


def quality_argument(
    mapper_name: str,
    fastq_format: FastqFormat,
    arguments: Mapping[FastqFormat, str | None],
) -> str | None:
    """Pick the quality encoding argument of an aligner.

    A format mapped to `None` (or missing) is not supported by the aligner.
    """

    if fastq_format not in arguments or arguments[fastq_format] is None:
        raise MapperConfigurationError(f"{mapper_name} does not handle the {fastq_format.format_name} FASTQ format")
    return arguments[fastq_format]


def execute_to_string(executor: MapperExecutor, command: Sequence[str]) -> str:
    """Run `command` with stderr merged into stdout and return the output."""

    handle = executor.execute(command, stdout=True, redirect_stderr=True)
    stream = handle.stdout
    output = stream.read() if stream is not None else b""
    if stream is not None:
        stream.close()
    handle.wait_for()
    return output.decode("utf-8", errors="replace")


class VersionParser(Protocol):
    def __call__(self, lines: list[str]) -> str | None: ...


def read_binary_version(
    instance: MapperInstance,
    executable: str,
    arguments: Sequence[str],
    parse: VersionParser,
) -> str | None:
    """Install `executable`, run it and parse its version from the output."""

    try:
        path = instance.executor.install(executable)
        output = execute_to_string(instance.executor, [path, *arguments])
    except (MapperError, OSError) as exc:
        logger.debug("Cannot read %s version: %s", instance.name, exc)
        return None
    lines = output.splitlines()
    if not lines:
        return None
    return parse(lines)


def split_first_line(separator: str) -> VersionParser:
    def _parse(lines: list[str]) -> str | None:
        tokens = lines[0].split(separator)
        return tokens[1].strip() if len(tokens) > 1 else None

    return _parse


def new_process(
    mapping: BaseMapping,
    plan: PipelinePlan,
    *,
    paired_end: bool,
    input_file1: Path | None = None,
    input_file2: Path | None = None,
    error_file: Path | None = None,
) -> MapperProcess:
    return MapperProcess(
        mapping.name,
        mapping.executor,
        mapping.temp_dir,
        plan,
        paired_end=paired_end,
        input_file1=input_file1,
        input_file2=input_file2,
        stderr_file=error_file,
        settings=mapping.settings,
    )


def pipe_paths(process: MapperProcess) -> list[str]:
    """Input paths of `process`, one per mate."""

    if process.paired_end:
        return [str(process.pipe_file1), str(process.pipe_file2)]
    return [str(process.pipe_file1)]
