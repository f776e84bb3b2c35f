from __future__ import annotations

import subprocess
from pathlib import Path
from typing import BinaryIO, Protocol, Sequence, runtime_checkable

from mapperkit.exceptions import MapperIOError
from mapperkit.logging import get_logger
from mapperkit.utils.subprocess import shell_join

logger = get_logger("executors")


@runtime_checkable
class ProcessHandle(Protocol):
    """A launched external process."""

    @property
    def stdout(self) -> BinaryIO | None: ...

    def poll(self) -> int | None: ...

    def wait_for(self) -> int: ...

    def terminate(self) -> None: ...


@runtime_checkable
class MapperExecutor(Protocol):
    """How mapper binaries are obtained and launched."""

    @property
    def identity(self) -> str: ...

    def install(self, executable: str) -> str: ...

    def is_executable(self, executable: str) -> bool: ...

    def execute(
        self,
        command: Sequence[str],
        *,
        work_dir: Path | None = None,
        stdout: bool = False,
        stderr_file: Path | None = None,
        redirect_stderr: bool = False,
        files_used: Sequence[Path] = (),
    ) -> ProcessHandle: ...


class LocalProcessHandle:
    """Handle on a process spawned on the host with `subprocess.Popen`."""

    def __init__(self, process: subprocess.Popen[bytes], *, stdout_requested: bool) -> None:
        self._process = process
        self._stdout_requested = stdout_requested

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> BinaryIO | None:
        if not self._stdout_requested:
            raise MapperIOError("The execution command has not been configured to redirect stdout")
        return self._process.stdout

    def poll(self) -> int | None:
        return self._process.poll()

    def wait_for(self) -> int:
        return self._process.wait()

    def terminate(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()


class LocalExecutor:
    """Shared `execute` implementation for executors running on the host."""

    def execute(
        self,
        command: Sequence[str],
        *,
        work_dir: Path | None = None,
        stdout: bool = False,
        stderr_file: Path | None = None,
        redirect_stderr: bool = False,
        files_used: Sequence[Path] = (),
    ) -> LocalProcessHandle:
        command_list = [str(arg) for arg in command]
        logger.debug("Launch command: %s (cwd=%s)", shell_join(command_list), work_dir)

        stderr_handle = None
        if redirect_stderr and stdout:
            stderr_target: int | BinaryIO = subprocess.STDOUT
        elif stderr_file is not None:
            stderr_handle = stderr_file.open("ab")
            stderr_target = stderr_handle
        else:
            stderr_target = subprocess.DEVNULL

        try:
            process = subprocess.Popen(
                command_list,
                cwd=str(work_dir) if work_dir is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if stdout else subprocess.DEVNULL,
                stderr=stderr_target,
            )
        except OSError as exc:
            raise MapperIOError(f"Unable to launch {shell_join(command_list)}: {exc}") from exc
        finally:
            if stderr_handle is not None:
                stderr_handle.close()

        return LocalProcessHandle(process, stdout_requested=stdout)
