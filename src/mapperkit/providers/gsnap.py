from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.providers.base import (
    new_process,
    normalize_flavor,
    pipe_paths,
    quality_argument,
    read_binary_version,
    split_first_line,
)

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance

GSNAP_FLAVOR = "gsnap"
GMAP_FLAVOR = "gmap"
GENOME_NAME = "genome"

QUALITY_ARGUMENTS: dict[FastqFormat, str | None] = {
    FastqFormat.FASTQ_SANGER: "--quality-protocol=sanger",
    FastqFormat.FASTQ_ILLUMINA: "--quality-protocol=illumina",
    FastqFormat.FASTQ_ILLUMINA_1_5: "--quality-protocol=illumina",
    FastqFormat.FASTQ_SOLEXA: None,
}


@dataclass(frozen=True, slots=True)
class GSNAPProvider:
    name: str = "GSNAP"
    default_version: str = "2012-07-20"
    default_flavor: str = GSNAP_FLAVOR
    archive_format: str = "gsnap_index_zip"
    default_mapper_arguments: str = "-N 1"
    multiple_instances_allowed: bool = False
    compressed_index: bool = True
    splits_allowed: bool = True
    index_generator_only: bool = False
    indexers: tuple[str, ...] = ("fa_coords", "gmap_process", "gmapindex", "gmap_build")

    def _binary(self, flavor: str | None) -> str:
        return GMAP_FLAVOR if normalize_flavor(flavor) == GMAP_FLAVOR else GSNAP_FLAVOR

    def indexer_executables(self, instance: MapperInstance) -> list[str]:
        return list(self.indexers)

    def mapper_executable(self, instance: MapperInstance) -> str:
        return self._binary(instance.flavor)

    def flavor_exists(self, instance: MapperInstance) -> bool:
        return normalize_flavor(instance.flavor) in (GSNAP_FLAVOR, GMAP_FLAVOR)

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]:
        # gmap_build finds the other indexers with -B
        genome = genome.absolute()
        binaries_dir = Path(shutil.which(str(indexer)) or indexer).absolute().parent
        return [
            str(indexer),
            "-B",
            str(binaries_dir),
            "-D",
            str(genome.parent),
            "-d",
            GENOME_NAME,
            *arguments,
            str(genome),
        ]

    def binary_version(self, instance: MapperInstance) -> str | None:
        return read_binary_version(
            instance, self.mapper_executable(instance), ["--version"], split_first_line(" version ")
        )

    def _plan(self, mapping: BaseMapping, paired_end: bool) -> PipelinePlan:
        quality = quality_argument(self.name, mapping.fastq_format, QUALITY_ARGUMENTS)
        gsnap_path = mapping.executor.install(self.mapper_executable(mapping.instance))
        index_dir = mapping.index_directory.absolute()

        if self._binary(mapping.flavor) == GSNAP_FLAVOR:
            output_format = ["-A", "sam"]
        else:
            output_format = ["-f", "sampe" if paired_end else "samse"]

        def command_lines(process: MapperProcess) -> list[list[str]]:
            cmd = [gsnap_path, *output_format, str(quality), "-t", str(mapping.thread_number)]
            cmd.extend(["-D", str(index_dir), "-d", GENOME_NAME, *mapping.mapper_arguments])
            cmd.extend(pipe_paths(process))
            return [cmd]

        return PipelinePlan(command_lines=command_lines, file_prefix="gsnap", files_used=(index_dir,))

    def map_se(
        self,
        mapping: BaseMapping,
        input_file: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        plan = self._plan(mapping, paired_end=False)
        return new_process(mapping, plan, paired_end=False, input_file1=input_file, error_file=error_file)

    def map_pe(
        self,
        mapping: BaseMapping,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        plan = self._plan(mapping, paired_end=True)
        return new_process(
            mapping,
            plan,
            paired_end=True,
            input_file1=input_file1,
            input_file2=input_file2,
            error_file=error_file,
        )
