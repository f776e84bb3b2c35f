from __future__ import annotations

import shutil
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Iterator

from mapperkit.bio.fastq import ReadSequence, to_fastq
from mapperkit.config import EngineSettings
from mapperkit.engine.counters import MAPPER_INPUT_READS_COUNTER, CounterIncrementer
from mapperkit.engine.writers import FastqWriter, FastqWriterNoThread, FastqWriterThread
from mapperkit.exceptions import (
    MapperCancelledError,
    MapperConfigurationError,
    MapperError,
    MapperExecutionError,
    MapperIOError,
)
from mapperkit.executors.base import MapperExecutor, ProcessHandle
from mapperkit.logging import get_logger
from mapperkit.utils.fifo import create_named_pipe, open_fifo_for_writing
from mapperkit.utils.io import remove_file
from mapperkit.utils.subprocess import command_lines_to_string

logger = get_logger("engine.process")

FASTQ_EXTENSION = ".fq"


class ProcessState(str, Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    RUNNING = "running"
    AWAITING_EXIT = "awaiting_exit"
    TERMINATED = "terminated"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelinePlan:
    """Aligner-specific shape of a mapper pipeline.

    `command_lines` receives the initialized process and returns the
    commands to launch, in order. `named_pipes` lists extra FIFOs shared by
    the commands as `(key, extension)` pairs, reachable through
    `MapperProcess.aux_file(key)`. With `mate_copies`, each mate is also
    written to a second FIFO (`MapperProcess.mate_copy_file(mate)`) for
    commands that need to read the reads again.
    """

    command_lines: Callable[["MapperProcess"], list[list[str]]]
    execution_directory: Path | None = None
    named_pipes: tuple[tuple[str, str], ...] = ()
    mate_copies: bool = False
    thread_for_read1: bool = False
    stdout_transform: Callable[[BinaryIO], BinaryIO] | None = None
    file_prefix: str = "mapper"
    files_used: tuple[Path, ...] = ()


class ProcessOutputStream:
    """Stdout of the last command of a pipeline.

    Closing the stream waits for the command to exit and raises
    `MapperExecutionError` on a non-zero exit code.
    """

    def __init__(self, process: "MapperProcess", handle: ProcessHandle, stream: BinaryIO) -> None:
        self._process = process
        self._handle = handle
        self._stream = stream
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def readline(self, size: int = -1) -> bytes:
        return self._stream.readline(size)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._stream)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()
        self._process._stdout_closed()
        returncode = self._process._wait_handle(self._handle)
        logger.debug("End of process with %d exit value", returncode, extra=self._process._log_extra)
        if returncode != 0:
            raise MapperExecutionError(self._process.mapper_name, returncode)

    def __enter__(self) -> "ProcessOutputStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MapperProcess:
    """One run of a mapper: chained subprocesses fed through named pipes.

    In entry mode the reads are written by the caller with the
    `write_entry*` methods. In file mode (`input_file1` given) the
    commands read existing FASTQ files and no writer is created.
    A process is single use.
    """

    def __init__(
        self,
        mapper_name: str,
        executor: MapperExecutor,
        temp_dir: Path,
        plan: PipelinePlan,
        *,
        paired_end: bool,
        input_file1: Path | None = None,
        input_file2: Path | None = None,
        stderr_file: Path | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        if paired_end and input_file1 is not None and input_file2 is None:
            raise MapperConfigurationError(f"Paired-end mapping with {mapper_name} needs two input files")

        self.mapper_name = mapper_name
        self.executor = executor
        self.temp_dir = temp_dir
        self.plan = plan
        self.paired_end = paired_end
        self.stderr_file = stderr_file
        self.settings = settings or EngineSettings()
        self.uuid = str(uuid.uuid4())
        self.file_mode = input_file1 is not None
        self.command_line = ""
        self._log_extra = {"mapper": mapper_name}

        self._state = ProcessState.CREATED
        self._files_to_remove: list[Path] = []
        self._aux_files: dict[str, Path] = {}
        self._copy_files: dict[int, Path] = {}
        self._handles: list[ProcessHandle] = []
        self._writers: dict[int, list[FastqWriter]] = {}
        self._stdout: ProcessOutputStream | None = None
        self._cancelled = threading.Event()
        self._drain: Future[None] | None = None
        self._failure: MapperError | None = None
        self._incrementer: CounterIncrementer | None = None
        self._counter_group: str | None = None

        self.pipe_file1 = input_file1 or temp_dir / f"mapper-inputfile1-{self.uuid}{FASTQ_EXTENSION}"
        self.pipe_file2 = input_file2 or temp_dir / f"mapper-inputfile2-{self.uuid}{FASTQ_EXTENSION}"

        try:
            self._initialize()
        except MapperError:
            self.remove_temporary_files()
            raise

    def _initialize(self) -> None:
        if not self.file_mode:
            mates = (1, 2) if self.paired_end else (1,)
            for mate in mates:
                self._create_pipe(self.pipe_file1 if mate == 1 else self.pipe_file2)
                if self.plan.mate_copies:
                    self._copy_files[mate] = self._create_pipe(
                        self.temp_dir / f"{self.plan.file_prefix}-fastq{mate}-{self.uuid}{FASTQ_EXTENSION}"
                    )

        for key, extension in self.plan.named_pipes:
            self._aux_files[key] = self._create_pipe(
                self.temp_dir / f"{self.plan.file_prefix}-{key}-{self.uuid}{extension}"
            )

        self._state = ProcessState.INITIALIZED

    def _create_pipe(self, path: Path) -> Path:
        create_named_pipe(path)
        self._files_to_remove.append(path)
        return path

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def stdout(self) -> ProcessOutputStream:
        if self._stdout is None:
            raise MapperConfigurationError(f"No {self.mapper_name} process has been launched")
        return self._stdout

    @property
    def temporary_files(self) -> list[Path]:
        return list(self._files_to_remove)

    def aux_file(self, key: str) -> Path:
        try:
            return self._aux_files[key]
        except KeyError:
            raise MapperConfigurationError(f"No {key} named pipe for {self.mapper_name}") from None

    def mate_copy_file(self, mate: int) -> Path:
        """FIFO receiving a second copy of the reads of `mate`.

        In file mode the input file itself is returned.
        """

        if self.file_mode:
            return self.pipe_file1 if mate == 1 else self.pipe_file2
        try:
            return self._copy_files[mate]
        except KeyError:
            raise MapperConfigurationError(f"No FASTQ copy of mate {mate} for {self.mapper_name}") from None

    def set_incrementer(self, incrementer: CounterIncrementer | None, counter_group: str) -> None:
        if not counter_group:
            raise MapperConfigurationError("The counter group cannot be empty")
        self._incrementer = incrementer
        self._counter_group = counter_group

    # Launch

    def start(self) -> ProcessOutputStream:
        if self._state is not ProcessState.INITIALIZED:
            raise MapperConfigurationError(
                f"Cannot start {self.mapper_name} process in state {self._state.value}"
            )

        commands = self.plan.command_lines(self)
        if not commands:
            raise MapperConfigurationError(f"No command to launch for {self.mapper_name}")
        self.command_line = command_lines_to_string(commands)
        work_dir = self.plan.execution_directory or self.temp_dir
        files_used = self._files_used()

        try:
            for index, command in enumerate(commands):
                last = index == len(commands) - 1
                if index > 0:
                    self._check_launched()
                handle = self.executor.execute(
                    command,
                    work_dir=work_dir,
                    stdout=last,
                    stderr_file=self.stderr_file,
                    files_used=files_used,
                )
                self._handles.append(handle)
                if not last and self.settings.launch_delay > 0 and self._cancelled.wait(self.settings.launch_delay):
                    raise MapperCancelledError(self.mapper_name)

            self._state = ProcessState.RUNNING
            if not self.file_mode:
                self._create_writers()

            last_handle = self._handles[-1]
            stream = last_handle.stdout
            if stream is None:
                raise MapperIOError(f"No standard output for {self.mapper_name} process")
            if self.plan.stdout_transform is not None:
                stream = self.plan.stdout_transform(stream)
            self._stdout = ProcessOutputStream(self, last_handle, stream)
        except MapperError as exc:
            self._fail(exc)
            raise

        logger.debug("Launched %s: %s", self.mapper_name, self.command_line, extra=self._log_extra)
        return self._stdout

    def _files_used(self) -> list[Path]:
        files = [self.pipe_file1]
        if self.paired_end:
            files.append(self.pipe_file2)
        files.extend(self._copy_files.values())
        files.extend(self._aux_files.values())
        files.extend(self.plan.files_used)
        if self.stderr_file is not None:
            files.append(self.stderr_file)
        return files

    def _check_launched(self) -> None:
        for handle in self._handles:
            returncode = handle.poll()
            if returncode is not None and returncode != 0:
                raise MapperExecutionError(self.mapper_name, returncode)

    def _consumers_alive(self) -> bool:
        return any(handle.poll() is None for handle in self._handles)

    def _opener(self, path: Path) -> Callable[[], BinaryIO]:
        def _open() -> BinaryIO:
            return open_fifo_for_writing(
                path,
                alive=self._consumers_alive,
                poll_interval=self.settings.pipe_poll_interval,
                stop=self._cancelled,
            )

        return _open

    def _threaded_writer(self, path: Path, name: str) -> FastqWriterThread:
        return FastqWriterThread(
            self._opener(path),
            name,
            capacity=self.settings.writer_queue_capacity,
            chunk_size=self.settings.writer_chunk_size,
            poll_interval=self.settings.pipe_poll_interval,
        )

    def _create_writers(self) -> None:
        if self.plan.thread_for_read1:
            writer1: FastqWriter = self._threaded_writer(self.pipe_file1, f"{self.mapper_name} fastq1")
        else:
            writer1 = FastqWriterNoThread(self._opener(self.pipe_file1), f"{self.mapper_name} fastq1")
        self._writers[1] = [writer1]
        if self.paired_end:
            self._writers[2] = [self._threaded_writer(self.pipe_file2, f"{self.mapper_name} fastq2")]
        for mate, copy_file in self._copy_files.items():
            self._writers[mate].append(self._threaded_writer(copy_file, f"{self.mapper_name} fastq{mate} copy"))

    # Reads

    def _writers_for(self, mate: int) -> list[FastqWriter]:
        if self.file_mode:
            raise MapperConfigurationError(f"{self.mapper_name} process reads its input from files")
        if self._state is not ProcessState.RUNNING:
            raise MapperConfigurationError(
                f"Cannot write reads to {self.mapper_name} process in state {self._state.value}"
            )
        return self._writers[mate]

    def _write(self, mate: int, fastq_record: str) -> None:
        for writer in self._writers_for(mate):
            writer.write(fastq_record)

    def _input_reads_incr(self) -> None:
        if self._incrementer is not None and self._counter_group is not None:
            self._incrementer.incr_counter(self._counter_group, MAPPER_INPUT_READS_COUNTER, 1)

    def write_entry(self, name: str, sequence: str, quality: str) -> None:
        if self.paired_end:
            raise MapperConfigurationError("Cannot use write_entry() in paired-end mode")
        self._write(1, to_fastq(name, sequence, quality))
        self._input_reads_incr()

    def write_entry1(self, read: ReadSequence | None) -> None:
        if read is None:
            return
        self._write(1, read.to_fastq())
        self._input_reads_incr()

    def write_entry2(self, read: ReadSequence | None) -> None:
        if not self.paired_end:
            raise MapperConfigurationError("Cannot use write_entry2() in single-end mode")
        if read is None:
            return
        self._write(2, read.to_fastq())

    def write_pair(
        self,
        name1: str,
        sequence1: str,
        quality1: str,
        name2: str,
        sequence2: str,
        quality2: str,
    ) -> None:
        if not self.paired_end:
            raise MapperConfigurationError("Cannot use write_pair() in single-end mode")
        self._write(1, to_fastq(name1, sequence1, quality1))
        self._write(2, to_fastq(name2, sequence2, quality2))
        self._input_reads_incr()

    def write_reads(self, reads: Iterable[ReadSequence]) -> int:
        """Write single-end reads and close the writer, returning the count."""

        count = 0
        for read in reads:
            self.write_entry1(read)
            count += 1
        self.close_entries_writer()
        return count

    def _close_mate(self, mate: int) -> None:
        for writer in self._writers.get(mate, []):
            writer.close()

    def close_writer1(self) -> None:
        self._close_mate(1)

    def close_writer2(self) -> None:
        self._close_mate(2)

    def close_entries_writer(self) -> None:
        self._close_mate(1)
        self._close_mate(2)

    # Output

    def to_file(self, output_file: Path) -> None:
        """Copy the mapper output to `output_file` from a background thread."""

        stdout = self.stdout
        done: Future[None] = Future()

        def _copy() -> None:
            try:
                with output_file.open("wb") as handle:
                    shutil.copyfileobj(stdout, handle)
                stdout.close()
            except (OSError, MapperError) as exc:
                done.set_exception(exc)
                return
            done.set_result(None)

        self._drain = done
        threading.Thread(target=_copy, name=f"{self.mapper_name} stdout", daemon=True).start()

    def _stdout_closed(self) -> None:
        if self._state is ProcessState.RUNNING:
            self._state = ProcessState.AWAITING_EXIT

    # Lifecycle

    def _wait_handle(self, handle: ProcessHandle) -> int:
        try:
            while True:
                if self._cancelled.is_set():
                    raise MapperCancelledError(self.mapper_name)
                returncode = handle.poll()
                if returncode is not None:
                    return returncode
                self._cancelled.wait(self.settings.pipe_poll_interval)
        except KeyboardInterrupt as exc:
            self.cancel()
            raise MapperCancelledError(self.mapper_name) from exc

    def _close_writers_quietly(self) -> MapperError | None:
        first_error: MapperError | None = None
        for writers in self._writers.values():
            for writer in writers:
                try:
                    writer.close()
                except MapperError as exc:
                    logger.debug("Writer of %s failed: %s", self.mapper_name, exc, extra=self._log_extra)
                    if first_error is None:
                        first_error = exc
        return first_error

    def wait_for(self) -> None:
        """Wait for every launched command, then remove temporary files.

        Exit codes are checked in launch order and the first non-zero one
        is raised as `MapperExecutionError`.
        """

        if self._state is ProcessState.TERMINATED:
            return
        if self._failure is not None:
            raise self._failure
        if not self._handles:
            raise MapperConfigurationError(f"No {self.mapper_name} process has been launched")

        try:
            writer_error = self._close_writers_quietly()
            for handle in self._handles:
                returncode = self._wait_handle(handle)
                logger.debug("End of process with %d exit value", returncode, extra=self._log_extra)
                if returncode != 0:
                    raise MapperExecutionError(self.mapper_name, returncode)
            if writer_error is not None:
                raise writer_error
            if self._drain is not None:
                self._drain.result()
        except MapperError as exc:
            self._fail(exc)
            raise

        self.remove_temporary_files()
        self._state = ProcessState.TERMINATED

    def cancel(self) -> None:
        """Stop the launched commands; pending waits raise `MapperCancelledError`."""

        self._cancelled.set()
        for handle in self._handles:
            handle.terminate()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _fail(self, exc: MapperError) -> None:
        self._failure = exc
        self._state = ProcessState.FAILED
        for handle in self._handles:
            handle.terminate()
        self._close_writers_quietly()
        for handle in self._handles:
            try:
                handle.wait_for()
            except OSError as wait_exc:
                logger.debug("Cannot reap %s process: %s", self.mapper_name, wait_exc, extra=self._log_extra)
        self.remove_temporary_files()

    def remove_temporary_files(self) -> None:
        for path in self._files_to_remove:
            remove_file(path, logger)

    def __repr__(self) -> str:
        return f"MapperProcess(mapper={self.mapper_name!r}, state={self._state.value!r}, uuid={self.uuid!r})"
