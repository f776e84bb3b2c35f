from __future__ import annotations

from mapperkit.config import EngineSettings, ExecutorKind
from mapperkit.exceptions import MapperConfigurationError
from mapperkit.executors.base import LocalExecutor, LocalProcessHandle, MapperExecutor, ProcessHandle
from mapperkit.executors.bundled import BundledExecutor
from mapperkit.executors.container import ContainerExecutor
from mapperkit.executors.path import PathExecutor
from mapperkit.logging import get_logger

logger = get_logger("executors")


def create_executor(
    kind: ExecutorKind,
    *,
    package: str,
    version: str,
    settings: EngineSettings,
    docker_image: str | None = None,
) -> MapperExecutor:
    """Build the executor strategy selected by `kind`."""

    executor: MapperExecutor
    if kind is ExecutorKind.BUNDLED:
        executor = BundledExecutor(
            package,
            version,
            settings.executables_dir,
            resources_root=settings.bundled_resources,
        )
    elif kind is ExecutorKind.PATH:
        executor = PathExecutor()
    elif kind is ExecutorKind.CONTAINER:
        if not docker_image:
            raise MapperConfigurationError(f"A Docker image is required to run {package} in a container")
        executor = ContainerExecutor(
            docker_image,
            settings.temp_dir,
            run_as_user=settings.docker_run_as_user,
            poll_interval=settings.pipe_poll_interval,
        )
    else:  # pragma: no cover
        raise MapperConfigurationError(f"Unknown executor: {kind}")

    logger.debug("Use %r to run %s %s", executor, package, version)
    return executor


__all__ = [
    "BundledExecutor",
    "ContainerExecutor",
    "LocalExecutor",
    "LocalProcessHandle",
    "MapperExecutor",
    "PathExecutor",
    "ProcessHandle",
    "create_executor",
]
