from __future__ import annotations

import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.config import EngineSettings, ExecutorKind
from mapperkit.exceptions import MapperConfigurationError, MapperExecutionError, MapperInstallationError
from mapperkit.executors import MapperExecutor, create_executor
from mapperkit.logging import get_logger
from mapperkit.providers.base import MapperProvider
from mapperkit.providers.registry import ProviderRegistry, default_registry
from mapperkit.utils.io import create_zip, remove_file, uncompress_if_necessary
from mapperkit.utils.subprocess import split_arguments

if TYPE_CHECKING:
    from mapperkit.mapping.index import MapperIndex

logger = get_logger("mapping")


def _pick(value: str | None, default: str) -> str:
    if value is None:
        return default
    return value.strip().lower() or default


@dataclass(frozen=True, slots=True)
class Mapper:
    """One aligner type: its provider plus the engine settings."""

    provider: MapperProvider
    settings: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def from_name(
        cls,
        name: str,
        registry: ProviderRegistry | None = None,
        settings: EngineSettings | None = None,
    ) -> "Mapper":
        provider = (registry or default_registry()).get(name)
        return cls(provider, settings or EngineSettings())

    @property
    def name(self) -> str:
        return self.provider.name

    @property
    def temp_dir(self) -> Path:
        return self.settings.temp_dir

    @property
    def default_version(self) -> str:
        return self.provider.default_version

    @property
    def default_flavor(self) -> str:
        return self.provider.default_flavor

    @property
    def archive_format(self) -> str:
        return self.provider.archive_format

    @property
    def compressed_index(self) -> bool:
        return self.provider.compressed_index

    @property
    def multiple_instances_allowed(self) -> bool:
        return self.provider.multiple_instances_allowed

    @property
    def splits_allowed(self) -> bool:
        return self.provider.splits_allowed

    @property
    def index_generator_only(self) -> bool:
        return self.provider.index_generator_only

    def new_instance(
        self,
        version: str | None = None,
        flavor: str | None = None,
        executor_kind: ExecutorKind = ExecutorKind.BUNDLED,
        docker_image: str | None = None,
        *,
        executor: MapperExecutor | None = None,
    ) -> "MapperInstance":
        """Bind a version and flavor of this mapper to an executor.

        An explicit `executor` wins over `executor_kind`; a `docker_image`
        selects the container executor.
        """

        version = _pick(version, self.default_version)
        flavor = _pick(flavor, self.default_flavor)
        if executor is None:
            kind = ExecutorKind.CONTAINER if docker_image else executor_kind
            executor = create_executor(
                kind,
                package=self.name.lower(),
                version=version,
                settings=self.settings,
                docker_image=docker_image,
            )
        return MapperInstance(self, executor, version, flavor)

    def __str__(self) -> str:
        return self.name


class MapperInstance:
    """A mapper version and flavor whose binaries are known to be runnable.

    Construction checks the flavor, then the indexer and mapper binaries,
    and installs the mapper binary.
    """

    def __init__(self, mapper: Mapper, executor: MapperExecutor, version: str, flavor: str | None) -> None:
        self.mapper = mapper
        self.executor = executor
        self.version = version
        self.flavor = flavor

        provider = mapper.provider
        if not provider.flavor_exists(self):
            raise MapperConfigurationError(
                f"Unknown flavor {flavor or 'not defined'} for mapper {mapper.name} version {version}"
            )

        executables = [*provider.indexer_executables(self), provider.mapper_executable(self)]
        for executable in executables:
            if not executor.is_executable(executable):
                raise MapperInstallationError(
                    f"Unable to find mapper {mapper.name} version {version} "
                    f"(flavor: {flavor or 'not defined'}): {executable} is not executable"
                )

        self.mapper_path = executor.install(provider.mapper_executable(self))

    @property
    def name(self) -> str:
        return self.mapper.name

    @property
    def provider(self) -> MapperProvider:
        return self.mapper.provider

    @property
    def settings(self) -> EngineSettings:
        return self.mapper.settings

    @property
    def temp_dir(self) -> Path:
        return self.mapper.temp_dir

    def install_indexer(self) -> str:
        path = ""
        for executable in self.provider.indexer_executables(self):
            path = self.executor.install(executable)
        return path

    def binary_version(self) -> str | None:
        return self.provider.binary_version(self)

    def make_archive_index(
        self,
        genome: Path,
        archive: Path,
        indexer_arguments: str | Sequence[str] = "",
        threads: int = 1,
    ) -> Path:
        """Build the aligner index of `genome` and zip it into `archive`.

        The indexer output goes to `<archive stem>.out` and `.err` next to
        the archive.
        """

        if not genome.is_file():
            raise MapperConfigurationError(f"Genome file does not exist: {genome}")

        indexer = self.install_indexer()
        started = time.monotonic()
        archive.parent.mkdir(parents=True, exist_ok=True)
        out_file = archive.with_suffix(".out")
        err_file = archive.with_suffix(".err")

        index_dir = Path(
            tempfile.mkdtemp(prefix=f"mapperkit-{self.name.lower()}-genomeindexdir-", dir=self.temp_dir)
        )
        try:
            source = uncompress_if_necessary(genome.absolute(), index_dir)
            genome_link = index_dir / source.name
            if source != genome_link:
                genome_link.symlink_to(source)

            command = self.provider.indexer_command(
                Path(indexer), genome_link, split_arguments(indexer_arguments), threads
            )
            logger.info("Computing %s index of %s", self.name, genome, extra={"mapper": self.name})
            handle = self.executor.execute(
                command,
                work_dir=index_dir,
                stdout=True,
                stderr_file=err_file,
                files_used=[index_dir, source],
            )
            stream = handle.stdout
            with out_file.open("wb") as out:
                if stream is not None:
                    shutil.copyfileobj(stream, out)
                    stream.close()
            returncode = handle.wait_for()
            if returncode != 0:
                raise MapperExecutionError(
                    self.name,
                    returncode,
                    f"Bad error result for index creation execution: {returncode}",
                )

            remove_file(genome_link, logger)
            create_zip(index_dir, archive, stored=not self.mapper.compressed_index)
        finally:
            shutil.rmtree(index_dir, ignore_errors=True)

        logger.info(
            "%s index computed in %.1fs: %s",
            self.name,
            time.monotonic() - started,
            archive,
            extra={"mapper": self.name},
        )
        return archive

    def new_mapper_index(self, archive: Path, index_dir: Path) -> MapperIndex:
        from mapperkit.mapping.index import MapperIndex

        return MapperIndex(self, archive, index_dir)

    def __repr__(self) -> str:
        return (
            f"MapperInstance(name={self.name!r}, version={self.version!r}, "
            f"flavor={self.flavor!r}, executor={self.executor.identity!r})"
        )
