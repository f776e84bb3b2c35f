from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.providers.base import (
    index_prefix,
    new_process,
    normalize_flavor,
    pipe_paths,
    quality_argument,
    read_binary_version,
)

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance

ALN_FLAVOR = "aln"
MEM_FLAVOR = "mem"

# Genomes of this size or more are indexed with the bwtsw algorithm.
MIN_BWTSW_GENOME_SIZE = 1 * 1024 * 1024 * 1024

ALN_QUALITY_ARGUMENTS: dict[FastqFormat, str | None] = {
    FastqFormat.FASTQ_SANGER: "",
    FastqFormat.FASTQ_ILLUMINA: "-I",
    FastqFormat.FASTQ_ILLUMINA_1_5: "-I",
    FastqFormat.FASTQ_SOLEXA: None,
}


def _parse_version(lines: list[str]) -> str | None:
    for line in lines:
        if line.startswith("Version:"):
            tokens = line.split(":", 1)
            return tokens[1].strip() if len(tokens) > 1 else None
    return None


@dataclass(frozen=True, slots=True)
class BWAProvider:
    """BWA, with the classic `aln` + `samse`/`sampe` pipeline or `mem`."""

    name: str = "BWA"
    default_version: str = "0.6.2"
    default_flavor: str = ALN_FLAVOR
    archive_format: str = "bwa_index_zip"
    default_mapper_arguments: str = "-l 28"
    multiple_instances_allowed: bool = False
    compressed_index: bool = True
    splits_allowed: bool = True
    index_generator_only: bool = False
    executable: str = "bwa"
    index_extension: str = ".bwt"

    def indexer_executables(self, instance: MapperInstance) -> list[str]:
        return [self.executable]

    def mapper_executable(self, instance: MapperInstance) -> str:
        return self.executable

    def flavor_exists(self, instance: MapperInstance) -> bool:
        return normalize_flavor(instance.flavor) in (ALN_FLAVOR, MEM_FLAVOR)

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]:
        cmd = [str(indexer), "index"]
        if genome.stat().st_size >= MIN_BWTSW_GENOME_SIZE:
            cmd.extend(["-a", "bwtsw"])
        cmd.extend(arguments)
        cmd.append(str(genome.absolute()))
        return cmd

    def binary_version(self, instance: MapperInstance) -> str | None:
        # bwa prints its version in the usage message
        return read_binary_version(instance, self.executable, [], _parse_version)

    def _prepare(self, mapping: BaseMapping) -> tuple[str, str]:
        bwa_path = mapping.executor.install(self.mapper_executable(mapping.instance))
        index = str(index_prefix(self.name, mapping.index_directory, self.index_extension))
        return bwa_path, index

    def _aln_command(self, mapping: BaseMapping, bwa_path: str, index: str, threads: int, sai: Path, reads: Path) -> list[str]:
        cmd = [bwa_path, ALN_FLAVOR]
        quality = quality_argument(self.name, mapping.fastq_format, ALN_QUALITY_ARGUMENTS)
        if quality:
            cmd.append(quality)
        cmd.extend(mapping.mapper_arguments)
        cmd.extend(["-t", str(threads), "-f", str(sai), index, str(reads)])
        return cmd

    def _mem_plan(self, mapping: BaseMapping, bwa_path: str, index: str) -> PipelinePlan:
        def command_lines(process: MapperProcess) -> list[list[str]]:
            cmd = [bwa_path, MEM_FLAVOR, *mapping.mapper_arguments, "-t", str(mapping.thread_number), index]
            cmd.extend(pipe_paths(process))
            return [cmd]

        return PipelinePlan(command_lines=command_lines, file_prefix="bwa", files_used=(mapping.index_directory,))

    def map_se(
        self,
        mapping: BaseMapping,
        input_file: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        bwa_path, index = self._prepare(mapping)

        if normalize_flavor(mapping.flavor) == MEM_FLAVOR:
            plan = self._mem_plan(mapping, bwa_path, index)
        else:
            # Fail before any pipe is created
            quality_argument(self.name, mapping.fastq_format, ALN_QUALITY_ARGUMENTS)

            def command_lines(process: MapperProcess) -> list[list[str]]:
                sai = process.aux_file("sai1")
                return [
                    self._aln_command(mapping, bwa_path, index, mapping.thread_number, sai, process.pipe_file1),
                    [bwa_path, "samse", index, str(sai), str(process.mate_copy_file(1))],
                ]

            plan = PipelinePlan(
                command_lines=command_lines,
                named_pipes=(("sai1", ".sai"),),
                mate_copies=True,
                file_prefix="bwa",
                files_used=(mapping.index_directory,),
            )

        return new_process(mapping, plan, paired_end=False, input_file1=input_file, error_file=error_file)

    def map_pe(
        self,
        mapping: BaseMapping,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        bwa_path, index = self._prepare(mapping)

        if normalize_flavor(mapping.flavor) == MEM_FLAVOR:
            plan = self._mem_plan(mapping, bwa_path, index)
        else:
            quality_argument(self.name, mapping.fastq_format, ALN_QUALITY_ARGUMENTS)
            # The two aln commands run side by side and share the threads.
            threads = mapping.thread_number // 2 if mapping.thread_number > 1 else 1

            def command_lines(process: MapperProcess) -> list[list[str]]:
                sai1 = process.aux_file("sai1")
                sai2 = process.aux_file("sai2")
                return [
                    self._aln_command(mapping, bwa_path, index, threads, sai1, process.pipe_file1),
                    self._aln_command(mapping, bwa_path, index, threads, sai2, process.pipe_file2),
                    [
                        bwa_path,
                        "sampe",
                        index,
                        str(sai1),
                        str(sai2),
                        str(process.mate_copy_file(1)),
                        str(process.mate_copy_file(2)),
                    ],
                ]

            plan = PipelinePlan(
                command_lines=command_lines,
                named_pipes=(("sai1", ".sai"), ("sai2", ".sai")),
                mate_copies=True,
                file_prefix="bwa",
                files_used=(mapping.index_directory,),
            )

        return new_process(
            mapping,
            plan,
            paired_end=True,
            input_file1=input_file1,
            input_file2=input_file2,
            error_file=error_file,
        )
