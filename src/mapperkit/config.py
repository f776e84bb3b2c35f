from __future__ import annotations

import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, TypeVar

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeFloat,
    PositiveFloat,
    PositiveInt,
    ValidationError,
    model_validator,
)

from mapperkit.exceptions import MapperKitUsageError


class ExecutorKind(str, Enum):
    BUNDLED = "bundled"
    PATH = "path"
    CONTAINER = "container"


class EngineSettings(BaseModel):
    """Runtime knobs of the mapper execution engine."""

    model_config = ConfigDict(extra="forbid")

    temp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    executables_temp_dir: Path | None = None
    # Pause between two chained launches; the engine synchronizes on the
    # pipes themselves so zero is the expected value.
    launch_delay: NonNegativeFloat = 0.0
    pipe_poll_interval: PositiveFloat = 0.05
    writer_queue_capacity: PositiveInt = 100000
    writer_chunk_size: PositiveInt = 1000
    bundled_resources: Path | None = None
    docker_run_as_user: bool = True

    @property
    def executables_dir(self) -> Path:
        return self.executables_temp_dir or self.temp_dir


class CommonConfig(BaseModel):
    """Shared command options across mapperkit subcommands."""

    model_config = ConfigDict(extra="forbid")

    threads: PositiveInt = 1
    log_file: Path | None = None
    verbose: bool = False
    quiet: bool = False

    @model_validator(mode="after")
    def _validate_verbosity(self) -> "CommonConfig":
        if self.verbose and self.quiet:
            raise ValueError("`verbose` and `quiet` cannot both be true.")
        return self


class MapperSelection(CommonConfig):
    mapper: str = "minimap2"
    mapper_version: str | None = None
    flavor: str | None = None
    executor: ExecutorKind = ExecutorKind.PATH
    docker_image: str | None = None

    @model_validator(mode="after")
    def _validate_container_image(self) -> "MapperSelection":
        if self.executor is ExecutorKind.CONTAINER and not self.docker_image:
            raise ValueError("`docker_image` is required with the container executor.")
        return self


class MapConfig(MapperSelection):
    index_archive: Path | None = None
    index_dir: Path | None = None
    r1: Path | None = None
    r2: Path | None = None
    output: Path | None = None
    stderr_file: Path | None = None
    fastq_format: str = "fastq-sanger"
    mapper_arguments: str | None = None
    multiple_instances: bool = False
    file_mode: bool = False


class IndexConfig(MapperSelection):
    genome: Path | None = None
    output: Path | None = None
    indexer_arguments: str = ""


class MapperKitConfig(BaseModel):
    """Top-level YAML config model."""

    model_config = ConfigDict(extra="forbid")

    engine: EngineSettings = Field(default_factory=EngineSettings)
    map: MapConfig | None = None
    index: IndexConfig | None = None


def load_config(config_path: Path | None) -> MapperKitConfig:
    """Load and validate a YAML config file."""

    if config_path is None:
        return MapperKitConfig()

    if not config_path.exists():
        raise MapperKitUsageError(f"Config file does not exist: {config_path}")

    if not config_path.is_file():
        raise MapperKitUsageError(f"Config path is not a file: {config_path}")

    payload_raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if payload_raw is None:
        payload_raw = {}

    if not isinstance(payload_raw, dict):
        raise MapperKitUsageError("Config YAML must be a key/value mapping at the top level.")

    try:
        return MapperKitConfig.model_validate(payload_raw)
    except ValidationError as exc:
        raise MapperKitUsageError(f"Invalid config file: {config_path}\n{exc}") from exc


T = TypeVar("T", bound=CommonConfig)


def merge_command_config(
    *,
    config_path: Path | None,
    section: str,
    model_cls: type[T],
    cli_overrides: Mapping[str, Any],
) -> tuple[T, EngineSettings]:
    """Merge YAML config values with explicit CLI overrides and validate."""

    root = load_config(config_path)
    section_model = getattr(root, section)

    merged: dict[str, Any] = {}
    if section_model is not None:
        merged.update(section_model.model_dump(exclude_none=True))

    for key, value in cli_overrides.items():
        if value is not None:
            merged[key] = value

    try:
        return model_cls.model_validate(merged), root.engine
    except ValidationError as exc:
        raise MapperKitUsageError(f"Invalid merged config for `{section}`:\n{exc}") from exc
