from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.providers.base import (
    LARGE_INDEX_FLAVOR,
    STANDARD_FLAVOR,
    new_process,
    normalize_flavor,
    pipe_paths,
    read_binary_version,
    split_first_line,
)

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance


@dataclass(frozen=True, slots=True)
class STARProvider:
    """STAR spliced aligner; `STARlong` is the large-index flavor."""

    name: str = "STAR"
    default_version: str = "2.7.2d"
    default_flavor: str = STANDARD_FLAVOR
    archive_format: str = "star_index_zip"
    default_mapper_arguments: str = "--outSAMunmapped Within"
    multiple_instances_allowed: bool = False
    compressed_index: bool = False
    splits_allowed: bool = False
    index_generator_only: bool = False

    def _binary(self, flavor: str | None) -> str:
        return "STARlong" if normalize_flavor(flavor) == LARGE_INDEX_FLAVOR else "STAR"

    def indexer_executables(self, instance: MapperInstance) -> list[str]:
        return [self._binary(instance.flavor)]

    def mapper_executable(self, instance: MapperInstance) -> str:
        return self._binary(instance.flavor)

    def flavor_exists(self, instance: MapperInstance) -> bool:
        return normalize_flavor(instance.flavor) in (STANDARD_FLAVOR, LARGE_INDEX_FLAVOR)

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]:
        genome = genome.absolute()
        return [
            str(indexer),
            "--runThreadN",
            str(threads),
            "--runMode",
            "genomeGenerate",
            "--genomeDir",
            str(genome.parent),
            "--genomeFastaFiles",
            str(genome),
            *arguments,
        ]

    def binary_version(self, instance: MapperInstance) -> str | None:
        # STAR_2.7.2d
        return read_binary_version(
            instance, self.mapper_executable(instance), ["--version"], split_first_line("_")
        )

    def _plan(self, mapping: BaseMapping, log_file: Path | None, paired_end: bool) -> PipelinePlan:
        star_path = mapping.executor.install(self.mapper_executable(mapping.instance))
        index_dir = mapping.index_directory.absolute()

        def command_lines(process: MapperProcess) -> list[list[str]]:
            cmd = [star_path, "--runThreadN", str(mapping.thread_number), "--genomeDir", str(index_dir)]
            if log_file is not None:
                cmd.extend(["--outFileNamePrefix", str(log_file.absolute())])
            cmd.extend(["--outStd", "SAM", *mapping.mapper_arguments, "--readFilesIn"])
            cmd.extend(pipe_paths(process))
            return [cmd]

        files_used: tuple[Path, ...] = (index_dir,)
        if log_file is not None:
            files_used += (log_file,)
        return PipelinePlan(
            command_lines=command_lines,
            thread_for_read1=paired_end,
            file_prefix="star",
            files_used=files_used,
        )

    def map_se(
        self,
        mapping: BaseMapping,
        input_file: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        plan = self._plan(mapping, log_file, paired_end=False)
        return new_process(mapping, plan, paired_end=False, input_file1=input_file, error_file=error_file)

    def map_pe(
        self,
        mapping: BaseMapping,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        plan = self._plan(mapping, log_file, paired_end=True)
        return new_process(
            mapping,
            plan,
            paired_end=True,
            input_file1=input_file1,
            input_file2=input_file2,
            error_file=error_file,
        )
