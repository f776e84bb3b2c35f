from __future__ import annotations

import gzip
import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import BinaryIO

from mapperkit.exceptions import MapperIOError

COMPRESSION_SUFFIXES = (".gz",)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_file(path: Path | None, logger: logging.Logger) -> bool:
    """Delete a temporary file, logging instead of raising on failure."""

    if path is None or not os.path.lexists(path):
        return True
    try:
        path.unlink()
    except OSError as exc:
        logger.warning("Cannot remove temporary file: %s (%s)", path, exc)
        return False
    return True


def list_files_by_extension(directory: Path, extension: str) -> list[Path]:
    return sorted(
        path for path in directory.iterdir() if path.is_file() and path.name.endswith(extension)
    )


def unique_file_by_extension(directory: Path, extension: str, *, label: str) -> Path:
    """Return the only file of `directory` whose name ends with `extension`."""

    if not directory.is_dir():
        raise MapperIOError(f"{label} index directory does not exist: {directory}")

    matches = list_files_by_extension(directory, extension)
    if not matches:
        raise MapperIOError(
            f'Unable to get index file for {label} with "{extension}" extension in directory: {directory}'
        )
    if len(matches) > 1:
        raise MapperIOError(
            f'More than one index file for {label} with "{extension}" extension in directory: {directory}'
        )
    return matches[0]


def strip_compression_suffix(name: str) -> str:
    for suffix in COMPRESSION_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def uncompress_if_necessary(path: Path, output_dir: Path) -> Path:
    """Decompress a gzip file into `output_dir`, or return it unchanged."""

    if not path.name.endswith(".gz"):
        return path

    target = output_dir / strip_compression_suffix(path.name)
    with gzip.open(path, "rb") as src, target.open("wb") as dst:
        shutil.copyfileobj(src, dst)
    return target


def create_zip(source_dir: Path, archive_path: Path, *, stored: bool = False) -> Path:
    """Zip every file of `source_dir` (recursively) into `archive_path`."""

    compression = zipfile.ZIP_STORED if stored else zipfile.ZIP_DEFLATED
    ensure_dir(archive_path.parent)
    with zipfile.ZipFile(archive_path, "w", compression=compression) as archive:
        for path in sorted(source_dir.rglob("*")):
            if path.is_file() and not path.is_symlink():
                archive.write(path, arcname=path.relative_to(source_dir).as_posix())
    return archive_path


def unzip(source: Path | BinaryIO, output_dir: Path) -> None:
    try:
        with zipfile.ZipFile(source) as archive:
            archive.extractall(output_dir)
    except (zipfile.BadZipFile, OSError) as exc:
        raise MapperIOError(f"Unable to unzip index archive {source} in {output_dir}: {exc}") from exc
