from __future__ import annotations

import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from mapperkit.config import EngineSettings, ExecutorKind
from mapperkit.exceptions import MapperConfigurationError, MapperInstallationError, MapperIOError
from mapperkit.executors import (
    BundledExecutor,
    ContainerExecutor,
    PathExecutor,
    create_executor,
)
from mapperkit.executors.bundled import platform_key
from mapperkit.executors.container import volumes_for, wrap_stdout_redirection
from mapperkit.executors.locks import file_lock, named_lock
from mapperkit.mapping import Mapper
from mapperkit.providers import Minimap2Provider


def _bundle(root: Path, package: str, version: str, *executables: str) -> Path:
    system, machine = platform_key()
    directory = root / system / machine / package / version
    directory.mkdir(parents=True)
    for executable in executables:
        binary = directory / executable
        binary.write_text(f"#!/bin/sh\necho {executable} {version}\n", encoding="utf-8")
    return directory


def test_concurrent_instances_extract_the_bundled_binary_once(tmp_path: Path) -> None:
    resources = tmp_path / "resources"
    _bundle(resources, "minimap2", "2.24", "minimap2")
    settings = EngineSettings(temp_dir=tmp_path, bundled_resources=resources)
    executor = BundledExecutor("minimap2", "2.24", tmp_path / "exe", resources_root=resources)
    mapper = Mapper(Minimap2Provider(), settings)

    with ThreadPoolExecutor(max_workers=8) as pool:
        instances = list(pool.map(lambda _: mapper.new_instance(executor=executor), range(16)))

    assert executor.extraction_count == 1
    installed = Path(instances[0].mapper_path)
    assert installed.is_file()
    assert os.access(installed, os.X_OK)
    assert {instance.mapper_path for instance in instances} == {str(installed)}
    assert not (installed.parent / ".minimap2.lock").exists()


def test_bundled_executor_runs_installed_binary(tmp_path: Path) -> None:
    resources = tmp_path / "resources"
    _bundle(resources, "bwa", "0.7.17", "bwa")
    executor = BundledExecutor("bwa", "0.7.17", tmp_path / "exe", resources_root=resources)

    assert executor.is_executable("bwa")
    assert not executor.is_executable("bwa-mem2")
    handle = executor.execute([executor.install("bwa")], stdout=True)
    assert handle.stdout.read() == b"bwa 0.7.17\n"
    assert handle.wait_for() == 0


def test_bundled_executor_missing_binary(tmp_path: Path) -> None:
    executor = BundledExecutor("star", "2.7.2d", tmp_path / "exe", resources_root=tmp_path / "empty")

    with pytest.raises(MapperInstallationError, match="No bundled binary STAR"):
        executor.install("STAR")


def test_missing_binary_fails_instance_construction(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    mapper = Mapper(Minimap2Provider(), EngineSettings(temp_dir=tmp_path))

    with pytest.raises(MapperInstallationError, match=r"Unable to find mapper Minimap2 version 2.24 \(flavor: standard\)"):
        mapper.new_instance(executor_kind=ExecutorKind.PATH)


def test_path_executor_resolves_search_path() -> None:
    executor = PathExecutor()
    assert executor.install("sh") == "sh"
    assert executor.is_executable("sh")
    assert not executor.is_executable("definitely-not-a-mapper-binary")


def test_local_execution_merges_stderr_and_guards_stdout(tmp_path: Path) -> None:
    executor = PathExecutor()
    handle = executor.execute(
        [sys.executable, "-c", "import sys; sys.stderr.write('err'); sys.stdout.write('out')"],
        stdout=True,
        redirect_stderr=True,
    )
    output = handle.stdout.read()
    assert handle.wait_for() == 0
    assert sorted(output.decode()) == sorted("errout")

    stderr_file = tmp_path / "stderr.txt"
    quiet = executor.execute(
        [sys.executable, "-c", "import sys; sys.stderr.write('logged')"],
        work_dir=tmp_path,
        stderr_file=stderr_file,
    )
    assert quiet.wait_for() == 0
    assert stderr_file.read_text(encoding="utf-8") == "logged"
    with pytest.raises(MapperIOError, match="not been configured to redirect stdout"):
        quiet.stdout


def test_local_execution_of_unknown_binary_raises(tmp_path: Path) -> None:
    with pytest.raises(MapperIOError, match="Unable to launch"):
        PathExecutor().execute([str(tmp_path / "nope")])


def test_container_command_line(tmp_path: Path) -> None:
    index_dir = tmp_path / "index"
    index_dir.mkdir()
    executor = ContainerExecutor("quay.io/biocontainers/bwa:0.7.17", tmp_path, run_as_user=False)

    command = executor.docker_command(
        ["bwa", "mem", str(index_dir / "genome")],
        work_dir=index_dir,
        files_used=[index_dir, tmp_path / "missing" / "reads.fq"],
    )

    assert command[:3] == ["docker", "run", "--rm"]
    assert ["--workdir", str(index_dir)] == command[3:5]
    assert f"{index_dir}:{index_dir}" in command
    assert f"{tmp_path / 'missing'}:{tmp_path / 'missing'}" in command
    assert "--user" not in command
    assert command[-4:] == ["quay.io/biocontainers/bwa:0.7.17", "bwa", "mem", str(index_dir / "genome")]


def test_wrap_stdout_redirection_quotes_the_command(tmp_path: Path) -> None:
    fifo = tmp_path / "stdout fifo"
    wrapped = wrap_stdout_redirection(["bwa", "mem", "-R", "@RG\tID:x"], fifo, redirect_stderr=True)

    assert wrapped[:2] == ["sh", "-c"]
    assert wrapped[2].startswith("bwa mem -R '@RG\tID:x' > ")
    assert wrapped[2].endswith(" 2>&1")
    assert f"'{fifo}'" in wrapped[2]


def test_volumes_are_deduplicated(tmp_path: Path) -> None:
    existing = tmp_path / "a.fq"
    existing.write_text("", encoding="utf-8")
    assert volumes_for([existing, existing, tmp_path / "b.fq"]) == [existing, tmp_path]


def test_create_executor_requires_image_for_containers(tmp_path: Path) -> None:
    settings = EngineSettings(temp_dir=tmp_path)
    with pytest.raises(MapperConfigurationError, match="Docker image"):
        create_executor(ExecutorKind.CONTAINER, package="bwa", version="0.7.17", settings=settings)

    executor = create_executor(ExecutorKind.BUNDLED, package="bwa", version="0.7.17", settings=settings)
    assert isinstance(executor, BundledExecutor)
    assert executor.identity == "bundled:bwa:0.7.17"


def test_named_lock_is_shared_and_file_lock_cleans_up(tmp_path: Path) -> None:
    assert named_lock("minimap2:2.24") is named_lock("minimap2:2.24")
    assert named_lock("minimap2:2.24") is not named_lock("bwa:0.7.17")

    lock_path = tmp_path / "locks" / "index.lock"
    with file_lock(lock_path):
        assert lock_path.exists()
    assert not lock_path.exists()


def test_file_lock_excludes_a_late_contender_after_release(tmp_path: Path) -> None:
    lock_path = tmp_path / "index.lock"
    guard = threading.Lock()
    inside: list[str] = []
    overlaps: list[tuple[tuple[str, ...], str]] = []

    def _contender(name: str, start: float, hold: float) -> None:
        time.sleep(start)
        with file_lock(lock_path):
            with guard:
                if inside:
                    overlaps.append((tuple(inside), name))
                inside.append(name)
            time.sleep(hold)
            with guard:
                inside.remove(name)

    threads = [
        threading.Thread(target=_contender, args=("first", 0.0, 0.5)),
        threading.Thread(target=_contender, args=("waiting", 0.1, 1.0)),
        threading.Thread(target=_contender, args=("late", 0.8, 0.1)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert overlaps == []
    assert not lock_path.exists()
