from __future__ import annotations

import os
import shutil
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from mapperkit.bio.fastq import FastqFormat
from mapperkit.engine.counters import CounterIncrementer
from mapperkit.exceptions import MapperIOError
from mapperkit.executors.locks import file_lock, named_lock
from mapperkit.logging import get_logger
from mapperkit.mapping.entry import EntryMapping, FileMapping
from mapperkit.utils.io import unzip

if TYPE_CHECKING:
    from mapperkit.mapping.mapper import MapperInstance

logger = get_logger("mapping.index")


class MapperIndex:
    """An index archive bound to a mapper instance and an unzip directory.

    The archive is unzipped on first use, once per directory, even across
    processes sharing the same directory.
    """

    def __init__(self, instance: MapperInstance, archive: Path, index_dir: Path) -> None:
        self.instance = instance
        self.archive = archive
        self.index_dir = index_dir
        self.unzip_count = 0
        self._lock = threading.Lock()
        self._ready = False

    @property
    def name(self) -> str:
        return self.instance.name

    @property
    def lock_file(self) -> Path:
        return self.index_dir.parent / f"{self.index_dir.name}.lock"

    @property
    def index_directory(self) -> Path:
        self._ensure_unzipped()
        return self.index_dir

    def _ensure_unzipped(self) -> None:
        with self._lock:
            if self._ready:
                return
            with named_lock(f"index:{self.index_dir.absolute()}"), file_lock(self.lock_file):
                if not self.index_dir.is_dir():
                    self._unzip()
                else:
                    logger.debug("Index already unzipped in %s", self.index_dir, extra={"mapper": self.name})
            self._ready = True

    def _unzip(self) -> None:
        if not self.archive.is_file():
            raise MapperIOError(f"{self.name} index archive does not exist: {self.archive}")

        partial = self.index_dir.parent / f".{self.index_dir.name}.partial"
        shutil.rmtree(partial, ignore_errors=True)
        logger.debug("Unzip %s index %s in %s", self.name, self.archive, self.index_dir, extra={"mapper": self.name})
        try:
            unzip(self.archive, partial)
            os.replace(partial, self.index_dir)
        except MapperIOError:
            shutil.rmtree(partial, ignore_errors=True)
            raise
        except OSError as exc:
            shutil.rmtree(partial, ignore_errors=True)
            raise MapperIOError(f"Unable to move unzipped index to {self.index_dir}: {exc}") from exc
        self.unzip_count += 1

    def new_entry_mapping(
        self,
        fastq_format: FastqFormat | str = FastqFormat.FASTQ_SANGER,
        mapper_arguments: str | Sequence[str] | None = None,
        thread_number: int = 1,
        multiple_instances_enabled: bool = False,
        incrementer: CounterIncrementer | None = None,
        counter_group: str | None = None,
    ) -> EntryMapping:
        return EntryMapping(
            self.instance,
            self.index_directory,
            fastq_format=fastq_format,
            mapper_arguments=mapper_arguments,
            thread_number=thread_number,
            multiple_instances_enabled=multiple_instances_enabled,
            incrementer=incrementer,
            counter_group=counter_group,
        )

    def new_file_mapping(
        self,
        fastq_format: FastqFormat | str = FastqFormat.FASTQ_SANGER,
        mapper_arguments: str | Sequence[str] | None = None,
        thread_number: int = 1,
        multiple_instances_enabled: bool = False,
    ) -> FileMapping:
        return FileMapping(
            self.instance,
            self.index_directory,
            fastq_format=fastq_format,
            mapper_arguments=mapper_arguments,
            thread_number=thread_number,
            multiple_instances_enabled=multiple_instances_enabled,
        )

    def __repr__(self) -> str:
        return f"MapperIndex(name={self.name!r}, archive={str(self.archive)!r}, index_dir={str(self.index_dir)!r})"
