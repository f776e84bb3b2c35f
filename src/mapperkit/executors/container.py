from __future__ import annotations

import os
import shlex
import subprocess
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Sequence

from mapperkit.exceptions import MapperInstallationError, MapperIOError
from mapperkit.executors.locks import named_lock
from mapperkit.logging import get_logger
from mapperkit.utils.fifo import create_named_pipe, open_fifo_for_reading
from mapperkit.utils.io import remove_file
from mapperkit.utils.subprocess import run_command, shell_join

logger = get_logger("executors.container")


def wrap_stdout_redirection(command: Sequence[str], stdout_file: Path, *, redirect_stderr: bool) -> list[str]:
    """Turn `command` into a `sh -c` invocation writing its stdout to `stdout_file`."""

    redirection = f"> {shlex.quote(str(stdout_file))}"
    if redirect_stderr:
        redirection += " 2>&1"
    return ["sh", "-c", f"{shell_join(command)} {redirection}"]


def volumes_for(paths: Sequence[Path]) -> list[Path]:
    """Directories and files to bind-mount so that `paths` resolve in the container."""

    volumes: list[Path] = []
    for path in paths:
        absolute = Path(os.path.abspath(path))
        mount = absolute if os.path.lexists(absolute) else absolute.parent
        if mount not in volumes:
            volumes.append(mount)
    return volumes


class ContainerProcessHandle:
    """A `docker run` process whose stdout goes through a host named pipe."""

    def __init__(self, process: subprocess.Popen[bytes], stdout_file: Path | None, poll_interval: float) -> None:
        self._process = process
        self._stdout_file = stdout_file
        self._poll_interval = poll_interval
        self._stdout: BinaryIO | None = None
        self._returncode: int | None = None

    @property
    def stdout(self) -> BinaryIO | None:
        if self._stdout_file is None:
            raise MapperIOError("The execution command has not been configured to redirect stdout")
        if self._stdout is None:
            self._stdout = open_fifo_for_reading(
                self._stdout_file,
                alive=lambda: self._process.poll() is None,
                poll_interval=self._poll_interval,
            )
        return self._stdout

    def poll(self) -> int | None:
        returncode = self._process.poll()
        if returncode is not None:
            self._finish(returncode)
        return returncode

    def wait_for(self) -> int:
        if self._returncode is not None:
            return self._returncode
        logger.debug("Wait the end of the container")
        self._finish(self._process.wait())
        return self._returncode  # type: ignore[return-value]

    def terminate(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()

    def _finish(self, returncode: int) -> None:
        if self._returncode is not None:
            return
        self._returncode = returncode
        if self._stdout_file is not None:
            remove_file(self._stdout_file, logger)


class ContainerExecutor:
    """Run mapper binaries inside a Docker image through the `docker` CLI."""

    def __init__(
        self,
        image: str,
        temp_dir: Path,
        *,
        docker: str = "docker",
        run_as_user: bool = True,
        poll_interval: float = 0.05,
    ) -> None:
        self.image = image
        self.temp_dir = temp_dir
        self.docker = docker
        self.run_as_user = run_as_user
        self.poll_interval = poll_interval
        self._pulled = False

    @property
    def identity(self) -> str:
        return f"container:{self.image}"

    def pull_image_if_not_exists(self) -> None:
        with named_lock(f"docker-pull:{self.image}"):
            if self._pulled:
                return
            inspect = run_command([self.docker, "image", "inspect", self.image], check=False, logger=logger)
            if inspect.returncode != 0:
                logger.info("Pull Docker image %s", self.image)
                pull = run_command([self.docker, "pull", self.image], check=False, logger=logger)
                if pull.returncode != 0:
                    raise MapperInstallationError(
                        f"Unable to pull Docker image {self.image}: {pull.stderr.strip() or pull.returncode}"
                    )
            self._pulled = True

    def install(self, executable: str) -> str:
        return executable

    def is_executable(self, executable: str) -> bool:
        return self.execute(["which", executable]).wait_for() == 0

    def docker_command(
        self,
        command: Sequence[str],
        *,
        work_dir: Path | None,
        files_used: Sequence[Path],
    ) -> list[str]:
        docker_cmd = [self.docker, "run", "--rm"]
        mounts = list(files_used)
        if work_dir is not None:
            docker_cmd.extend(["--workdir", str(Path(os.path.abspath(work_dir)))])
            mounts.append(work_dir)
        for volume in volumes_for(mounts):
            docker_cmd.extend(["--volume", f"{volume}:{volume}"])
        if self.run_as_user:
            docker_cmd.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        docker_cmd.append(self.image)
        docker_cmd.extend(command)
        return docker_cmd

    def execute(
        self,
        command: Sequence[str],
        *,
        work_dir: Path | None = None,
        stdout: bool = False,
        stderr_file: Path | None = None,
        redirect_stderr: bool = False,
        files_used: Sequence[Path] = (),
    ) -> ContainerProcessHandle:
        self.pull_image_if_not_exists()

        command_list = [str(arg) for arg in command]
        mounts = list(files_used)
        stdout_file: Path | None = None
        if stdout:
            stdout_file = create_named_pipe(self.temp_dir / f"stdout-{uuid.uuid4()}")
            mounts.append(stdout_file)
            command_list = wrap_stdout_redirection(command_list, stdout_file, redirect_stderr=redirect_stderr)

        docker_cmd = self.docker_command(command_list, work_dir=work_dir, files_used=mounts)
        logger.debug("Start Docker container: %s", shell_join(docker_cmd))

        stderr_handle = stderr_file.open("ab") if stderr_file is not None else None
        try:
            process = subprocess.Popen(
                docker_cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=stderr_handle if stderr_handle is not None else subprocess.DEVNULL,
            )
        except OSError as exc:
            if stdout_file is not None:
                remove_file(stdout_file, logger)
            raise MapperIOError(f"Unable to start Docker container for {self.image}: {exc}") from exc
        finally:
            if stderr_handle is not None:
                stderr_handle.close()

        return ContainerProcessHandle(process, stdout_file, self.poll_interval)

    def __repr__(self) -> str:
        return f"ContainerExecutor(image={self.image!r})"
