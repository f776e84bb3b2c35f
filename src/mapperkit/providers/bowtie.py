from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.engine.process import MapperProcess, PipelinePlan
from mapperkit.providers.base import (
    LARGE_INDEX_FLAVOR,
    STANDARD_FLAVOR,
    index_prefix,
    new_process,
    normalize_flavor,
    quality_argument,
    read_binary_version,
    split_first_line,
    version_at_least,
)

if TYPE_CHECKING:
    from mapperkit.mapping.entry import BaseMapping
    from mapperkit.mapping.mapper import MapperInstance

INDEX_BASENAME = "genome"

BOWTIE_QUALITY_ARGUMENTS: dict[FastqFormat, str | None] = {
    FastqFormat.FASTQ_SANGER: "--phred33-quals",
    FastqFormat.FASTQ_ILLUMINA: "--phred64-quals",
    FastqFormat.FASTQ_ILLUMINA_1_5: "--phred64-quals",
    FastqFormat.FASTQ_SOLEXA: "--solexa-quals",
}

BOWTIE2_QUALITY_ARGUMENTS: dict[FastqFormat, str | None] = {
    FastqFormat.FASTQ_SANGER: "--phred33",
    FastqFormat.FASTQ_ILLUMINA: "--phred64",
    FastqFormat.FASTQ_ILLUMINA_1_5: "--phred64",
    FastqFormat.FASTQ_SOLEXA: "--solexa-quals",
}


def is_large_index(version: str, flavor: str | None, first_flavored_version: str) -> bool:
    return version_at_least(version, first_flavored_version) and normalize_flavor(flavor) == LARGE_INDEX_FLAVOR


def flavored_binary(
    version: str,
    flavor: str | None,
    binary: str,
    first_flavored_version: str,
    flavored_name: str | None = None,
) -> str:
    """Binary name for `flavor`; releases from `first_flavored_version` ship `-s`/`-l` builds."""

    if not version_at_least(version, first_flavored_version):
        return binary
    suffix = "-l" if normalize_flavor(flavor) == LARGE_INDEX_FLAVOR else "-s"
    return (flavored_name or binary) + suffix


@dataclass(frozen=True, slots=True)
class BowtieFamilyProvider:
    """Bowtie and Bowtie2 share one pipeline and differ only in flags.

    `sam_flag` is passed to aligners that do not write SAM by default,
    `index_flag` precedes the index basename and `single_end_flag`
    precedes the reads of a single-end run. A `None` flag is omitted.
    """

    name: str
    default_version: str
    archive_format: str
    default_mapper_arguments: str
    mapper_binary: str
    flavored_mapper_binary: str
    indexer_binary: str
    first_flavored_version: str
    index_extension: str
    large_index_extension: str
    quality_arguments: Mapping[FastqFormat, str | None] = field(hash=False)
    sam_flag: str | None = None
    index_flag: str | None = None
    single_end_flag: str | None = None
    default_flavor: str = STANDARD_FLAVOR
    multiple_instances_allowed: bool = True
    compressed_index: bool = True
    splits_allowed: bool = True
    index_generator_only: bool = False

    def indexer_executables(self, instance: MapperInstance) -> list[str]:
        return [flavored_binary(instance.version, instance.flavor, self.indexer_binary, self.first_flavored_version)]

    def mapper_executable(self, instance: MapperInstance) -> str:
        return flavored_binary(
            instance.version,
            instance.flavor,
            self.mapper_binary,
            self.first_flavored_version,
            self.flavored_mapper_binary,
        )

    def flavor_exists(self, instance: MapperInstance) -> bool:
        return normalize_flavor(instance.flavor) in (None, STANDARD_FLAVOR, LARGE_INDEX_FLAVOR)

    def indexer_command(
        self,
        indexer: Path,
        genome: Path,
        arguments: Sequence[str],
        threads: int,
    ) -> list[str]:
        return [str(indexer), *arguments, str(genome.absolute()), INDEX_BASENAME]

    def binary_version(self, instance: MapperInstance) -> str | None:
        return read_binary_version(
            instance, self.mapper_executable(instance), ["--version"], split_first_line(" version ")
        )

    def index_argument(self, mapping: BaseMapping) -> str:
        extension = (
            self.large_index_extension
            if is_large_index(mapping.version, mapping.flavor, self.first_flavored_version)
            else self.index_extension
        )
        return index_prefix(self.name, mapping.index_directory, extension).name

    def _plan(self, mapping: BaseMapping, paired_end: bool) -> PipelinePlan:
        bowtie_path = mapping.executor.install(self.mapper_executable(mapping.instance))
        index = self.index_argument(mapping)
        quality = quality_argument(self.name, mapping.fastq_format, self.quality_arguments)

        common = [bowtie_path]
        if self.sam_flag is not None:
            common.append(self.sam_flag)
        common.extend([str(quality), *mapping.mapper_arguments, "-p", str(mapping.thread_number)])
        # Index memory mapped and shared between instances
        if mapping.multiple_instances_enabled:
            common.append("--mm")
        if self.index_flag is not None:
            common.append(self.index_flag)
        common.append(index)

        def command_lines(process: MapperProcess) -> list[list[str]]:
            cmd = list(common)
            if paired_end:
                cmd.extend(["-1", str(process.pipe_file1), "-2", str(process.pipe_file2)])
            else:
                if self.single_end_flag is not None:
                    cmd.append(self.single_end_flag)
                cmd.append(str(process.pipe_file1))
            return [cmd]

        return PipelinePlan(
            command_lines=command_lines,
            execution_directory=mapping.index_directory,
            file_prefix=self.mapper_binary,
            files_used=(mapping.index_directory,),
        )

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


def bowtie_provider() -> BowtieFamilyProvider:
    return BowtieFamilyProvider(
        name="Bowtie",
        default_version="1.2.3",
        archive_format="bowtie_index_zip",
        default_mapper_arguments="--best -k 2",
        mapper_binary="bowtie",
        flavored_mapper_binary="bowtie-align",
        indexer_binary="bowtie-build",
        first_flavored_version="1.1.0",
        index_extension=".rev.1.ebwt",
        large_index_extension=".rev.1.ebwtl",
        quality_arguments=BOWTIE_QUALITY_ARGUMENTS,
        sam_flag="-S",
    )


def bowtie2_provider() -> BowtieFamilyProvider:
    return BowtieFamilyProvider(
        name="Bowtie2",
        default_version="2.3.5.1",
        archive_format="bowtie2_index_zip",
        default_mapper_arguments="--very-sensitive",
        mapper_binary="bowtie2",
        flavored_mapper_binary="bowtie2-align",
        indexer_binary="bowtie2-build",
        first_flavored_version="2.1.0",
        index_extension=".rev.1.bt2",
        large_index_extension=".rev.1.bt2l",
        quality_arguments=BOWTIE2_QUALITY_ARGUMENTS,
        index_flag="-x",
        single_end_flag="-U",
    )
