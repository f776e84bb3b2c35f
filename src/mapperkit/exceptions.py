from __future__ import annotations


class MapperKitError(Exception):
    """Base class for mapperkit exceptions."""

    exit_code: int = 1


class MapperKitUsageError(MapperKitError):
    """Raised when command arguments or inputs are invalid."""

    exit_code = 2


class MapperError(MapperKitError):
    """Error raised by the mapper execution engine."""


class MapperConfigurationError(MapperError):
    """Unknown mapper, unsupported flavor or unsupported quality encoding."""


class MapperInstallationError(MapperError):
    """A mapper binary or container image cannot be made available."""


class MapperIOError(MapperError):
    """I/O failure on pipes, writer tasks or index files."""


class MapperExecutionError(MapperError):
    """A mapper subprocess exited with a non-zero exit code."""

    def __init__(self, mapper_name: str, returncode: int, message: str | None = None) -> None:
        self.mapper_name = mapper_name
        self.returncode = returncode
        super().__init__(message or f"Bad error result for {mapper_name} execution: {returncode}")


class MapperCancelledError(MapperExecutionError):
    """A blocking wait on a mapper process was interrupted."""

    def __init__(self, mapper_name: str) -> None:
        super().__init__(mapper_name, -1, f"Execution of {mapper_name} has been cancelled")
