from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.config import EngineSettings
from mapperkit.engine.counters import CounterIncrementer
from mapperkit.engine.process import MapperProcess
from mapperkit.exceptions import MapperIOError
from mapperkit.executors.base import MapperExecutor
from mapperkit.utils.subprocess import split_arguments

if TYPE_CHECKING:
    from mapperkit.mapping.mapper import MapperInstance
    from mapperkit.providers.base import MapperProvider


class BaseMapping:
    """Read-only parameters of one mapping invocation.

    With multiple instances enabled, the index is memory mapped and shared
    between concurrent mapper processes, each running on one thread.
    """

    def __init__(
        self,
        instance: MapperInstance,
        index_directory: Path,
        *,
        fastq_format: FastqFormat | str = FastqFormat.FASTQ_SANGER,
        mapper_arguments: str | Sequence[str] | None = None,
        thread_number: int = 1,
        multiple_instances_enabled: bool = False,
    ) -> None:
        self.instance = instance
        self.index_directory = index_directory
        if isinstance(fastq_format, str):
            fastq_format = FastqFormat.from_name(fastq_format)
        self.fastq_format = fastq_format

        if mapper_arguments is None:
            mapper_arguments = instance.provider.default_mapper_arguments
        self.mapper_arguments = split_arguments(mapper_arguments)

        self.multiple_instances_enabled = instance.provider.multiple_instances_allowed and multiple_instances_enabled
        self.thread_number = thread_number if thread_number > 1 and not self.multiple_instances_enabled else 1

    @property
    def name(self) -> str:
        return self.instance.name

    @property
    def version(self) -> str:
        return self.instance.version

    @property
    def flavor(self) -> str | None:
        return self.instance.flavor

    @property
    def executor(self) -> MapperExecutor:
        return self.instance.executor

    @property
    def provider(self) -> MapperProvider:
        return self.instance.provider

    @property
    def temp_dir(self) -> Path:
        return self.instance.temp_dir

    @property
    def settings(self) -> EngineSettings:
        return self.instance.settings

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, version={self.version!r}, flavor={self.flavor!r}, "
            f"fastq_format={self.fastq_format.format_name!r}, threads={self.thread_number}, "
            f"multiple_instances={self.multiple_instances_enabled})"
        )

    def _start(self, process: MapperProcess) -> MapperProcess:
        process.start()
        return process


class EntryMapping(BaseMapping):
    """Mapping fed by the caller, one read at a time, through named pipes."""

    def __init__(
        self,
        instance: MapperInstance,
        index_directory: Path,
        *,
        fastq_format: FastqFormat | str = FastqFormat.FASTQ_SANGER,
        mapper_arguments: str | Sequence[str] | None = None,
        thread_number: int = 1,
        multiple_instances_enabled: bool = False,
        incrementer: CounterIncrementer | None = None,
        counter_group: str | None = None,
    ) -> None:
        super().__init__(
            instance,
            index_directory,
            fastq_format=fastq_format,
            mapper_arguments=mapper_arguments,
            thread_number=thread_number,
            multiple_instances_enabled=multiple_instances_enabled,
        )
        self.incrementer = incrementer
        self.counter_group = counter_group or self.name

    def _start(self, process: MapperProcess) -> MapperProcess:
        if self.incrementer is not None:
            process.set_incrementer(self.incrementer, self.counter_group)
        return super()._start(process)

    def map_se(self, error_file: Path | None = None, log_file: Path | None = None) -> MapperProcess:
        """Launch a single-end mapping; reads go through `write_entry`."""

        return self._start(self.provider.map_se(self, None, error_file, log_file))

    def map_pe(self, error_file: Path | None = None, log_file: Path | None = None) -> MapperProcess:
        """Launch a paired-end mapping; reads go through `write_pair`."""

        return self._start(self.provider.map_pe(self, None, None, error_file, log_file))


def _check_reads_file(path: Path) -> Path:
    if not path.is_file():
        raise MapperIOError(f"FASTQ file does not exist: {path}")
    return path.absolute()


class FileMapping(BaseMapping):
    """Mapping of existing FASTQ files, read by the aligner itself."""

    def map_se(
        self,
        reads_file: Path,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        reads_file = _check_reads_file(reads_file)
        return self._start(self.provider.map_se(self, reads_file, error_file, log_file))

    def map_pe(
        self,
        reads_file1: Path,
        reads_file2: Path,
        error_file: Path | None = None,
        log_file: Path | None = None,
    ) -> MapperProcess:
        reads_file1 = _check_reads_file(reads_file1)
        reads_file2 = _check_reads_file(reads_file2)
        return self._start(self.provider.map_pe(self, reads_file1, reads_file2, error_file, log_file))
