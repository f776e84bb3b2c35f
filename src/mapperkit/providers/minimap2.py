from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.providers.base import (
    STANDARD_FLAVOR,
    new_process,
    normalize_flavor,
    pipe_paths,
    read_binary_version,
)
from mapperkit.utils.io import unique_file_by_extension

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance


def _first_line(lines: list[str]) -> str | None:
    return lines[0].strip() or None


@dataclass(frozen=True, slots=True)
class Minimap2Provider:
    """Minimap2 in SAM output mode. Base qualities are copied, not interpreted."""

    name: str = "Minimap2"
    default_version: str = "2.24"
    default_flavor: str = STANDARD_FLAVOR
    archive_format: str = "minimap2_index_zip"
    default_mapper_arguments: str = "-x sr"
    multiple_instances_allowed: bool = False
    compressed_index: bool = True
    splits_allowed: bool = True
    index_generator_only: bool = False
    executable: str = "minimap2"
    index_extension: str = ".mmi"

    def indexer_executables(self, instance: MapperInstance) -> list[str]:
        return [self.executable]

    def mapper_executable(self, instance: MapperInstance) -> str:
        return self.executable

    def flavor_exists(self, instance: MapperInstance) -> bool:
        return normalize_flavor(instance.flavor) in (None, STANDARD_FLAVOR)

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]:
        genome = genome.absolute()
        index_file = genome.with_name(genome.stem + self.index_extension)
        return [str(indexer), *arguments, "-t", str(threads), "-d", str(index_file), str(genome)]

    def binary_version(self, instance: MapperInstance) -> str | None:
        return read_binary_version(instance, self.executable, ["--version"], _first_line)

    def _plan(self, mapping: BaseMapping) -> PipelinePlan:
        minimap2_path = mapping.executor.install(self.mapper_executable(mapping.instance))
        index_file = unique_file_by_extension(mapping.index_directory, self.index_extension, label=self.name).absolute()

        def command_lines(process: MapperProcess) -> list[list[str]]:
            cmd = [minimap2_path, "-a", *mapping.mapper_arguments, "-t", str(mapping.thread_number), str(index_file)]
            cmd.extend(pipe_paths(process))
            return [cmd]

        return PipelinePlan(command_lines=command_lines, file_prefix="minimap2", files_used=(index_file,))

    def map_se(
        self,
        mapping: BaseMapping,
        input_file: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        return new_process(mapping, self._plan(mapping), paired_end=False, input_file1=input_file, error_file=error_file)

    def map_pe(
        self,
        mapping: BaseMapping,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        return new_process(
            mapping,
            self._plan(mapping),
            paired_end=True,
            input_file1=input_file1,
            input_file2=input_file2,
            error_file=error_file,
        )
