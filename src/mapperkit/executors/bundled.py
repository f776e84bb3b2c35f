from __future__ import annotations

import os
import platform
import shutil
import uuid
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path

from mapperkit import __version__
from mapperkit.exceptions import MapperInstallationError
from mapperkit.executors.base import LocalExecutor
from mapperkit.executors.locks import file_lock, named_lock
from mapperkit.logging import get_logger

logger = get_logger("executors.bundled")


def platform_key() -> tuple[str, str]:
    """Return the `(system, machine)` pair used to lay out bundled binaries."""

    return platform.system().lower(), platform.machine().lower()


class BundledExecutor(LocalExecutor):
    """Run mapper binaries shipped inside the package.

    Binaries live under `binaries/<system>/<machine>/<package>/<version>/`
    in the package data (or under `resources_root` when given) and are
    copied once into `<executables_dir>/mapperkit/<app version>/<package>/<version>/`.
    """

    def __init__(
        self,
        package: str,
        version: str,
        executables_dir: Path,
        *,
        resources_root: Path | None = None,
    ) -> None:
        self.package = package
        self.version = version
        self.install_dir = executables_dir / "mapperkit" / __version__ / package / version
        self.resources_root = resources_root
        self.extraction_count = 0

    @property
    def identity(self) -> str:
        return f"bundled:{self.package}:{self.version}"

    def _resource(self, executable: str) -> Traversable:
        system, machine = platform_key()
        if self.resources_root is not None:
            root: Traversable = self.resources_root
        else:
            root = resources.files("mapperkit") / "binaries"
        return root / system / machine / self.package / self.version / executable

    def is_executable(self, executable: str) -> bool:
        installed = self.install_dir / executable
        if installed.is_file() and os.access(installed, os.X_OK):
            return True
        return self._resource(executable).is_file()

    def install(self, executable: str) -> str:
        target = self.install_dir / executable
        with named_lock(f"{self.identity}:{executable}"):
            if target.is_file():
                logger.debug("%s already installed in %s", executable, target.parent)
                return str(target)

            with file_lock(self.install_dir / f".{executable}.lock"):
                if target.is_file():
                    return str(target)
                self._extract(executable, target)

        return str(target)

    def _extract(self, executable: str, target: Path) -> None:
        source = self._resource(executable)
        if not source.is_file():
            raise MapperInstallationError(
                f"No bundled binary {executable} for {self.package} {self.version} "
                f"({'/'.join(platform_key())})"
            )

        logger.info("Install %s %s (%s) in %s", self.package, self.version, executable, target.parent)
        partial = target.with_name(f".{executable}.{uuid.uuid4().hex}")
        try:
            with source.open("rb") as src, partial.open("wb") as dst:
                shutil.copyfileobj(src, dst)
            partial.chmod(0o755)
            os.replace(partial, target)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise MapperInstallationError(f"Unable to install {executable} in {target.parent}: {exc}") from exc
        self.extraction_count += 1

    def __repr__(self) -> str:
        return f"BundledExecutor(package={self.package!r}, version={self.version!r})"
