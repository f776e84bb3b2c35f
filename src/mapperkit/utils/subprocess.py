from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from mapperkit.exceptions import MapperError


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandExecutionError(MapperError):
    pass


def shell_join(command: Sequence[str | Path]) -> str:
    return shlex.join([str(arg) for arg in command])


def split_arguments(arguments: str | Sequence[str] | None) -> list[str]:
    """Tokenize user supplied arguments; a list is taken as already split."""

    if arguments is None:
        return []
    if isinstance(arguments, str):
        return shlex.split(arguments)
    return list(arguments)


def command_lines_to_string(commands: Sequence[Sequence[str]] | None) -> str:
    """Render a chain of command lines the way they are logged."""

    if not commands:
        return ""
    return " ; ".join(shell_join(command) for command in commands if command)


def run_command(
    command: Sequence[str | Path],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    logger: logging.Logger | None = None,
) -> CommandResult:
    """Run a short helper command to completion and capture its output."""

    command_list = [str(arg) for arg in command]
    cmd_text = shell_join(command_list)

    if logger is not None:
        logger.debug("Executing command: %s", cmd_text)

    env_payload: Mapping[str, str] | None
    if env is not None:
        env_payload = dict(os.environ)
        env_payload.update(env)
    else:
        env_payload = None

    try:
        completed = subprocess.run(
            command_list,
            cwd=str(cwd) if cwd is not None else None,
            env=env_payload,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise CommandExecutionError(f"Unable to execute command: {cmd_text}: {exc}") from exc

    result = CommandResult(
        command=command_list,
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr or "",
    )

    if check and completed.returncode != 0:
        raise CommandExecutionError(
            f"Command failed with exit code {completed.returncode}: {cmd_text}\n{result.stderr.strip()}"
        )

    return result
