from __future__ import annotations

import shutil

from mapperkit.executors.base import LocalExecutor


class PathExecutor(LocalExecutor):
    """Run mapper binaries found on the system `PATH`."""

    identity = "path"

    def install(self, executable: str) -> str:
        return executable

    def is_executable(self, executable: str) -> bool:
        return shutil.which(executable) is not None

    def __repr__(self) -> str:
        return "PathExecutor()"
