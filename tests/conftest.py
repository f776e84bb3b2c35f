from __future__ import annotations

import io
import os
import sys
from pathlib import Path
from typing import Sequence

import pytest

from mapperkit.config import EngineSettings

FAKE_MINIMAP2 = """#!{python}
import os
import sys
import time

args = sys.argv[1:]
if args == ["--version"]:
    print("2.24-r1122")
    sys.exit(0)

time.sleep(float(os.environ.get("FAKE_MINIMAP2_SLEEP", "0")))
exit_code = int(os.environ.get("FAKE_MINIMAP2_EXIT", "0"))
if exit_code:
    sys.stderr.write("fake failure\\n")
    sys.exit(exit_code)

if "-d" in args:
    with open(args[args.index("-d") + 1], "w") as handle:
        handle.write("fake minimap2 index\\n")
    print("[M::main] indexed")
    sys.exit(0)

index = next(i for i, arg in enumerate(args) if arg.endswith(".mmi"))
out = sys.stdout
out.write("@HD\\tVN:1.6\\tSO:unsorted\\n")
out.write("@PG\\tID:minimap2\\tPN:minimap2\\n")
for path in args[index + 1:]:
    with open(path) as reads:
        lines = [line.rstrip("\\n") for line in reads]
    for i in range(0, len(lines) - 3, 4):
        name = lines[i][1:]
        out.write("\\t".join([name, "4", "*", "0", "0", "*", "*", "0", "0", lines[i + 1], lines[i + 3]]) + "\\n")
out.flush()
"""

FAKE_BWA = """#!{python}
import sys

args = sys.argv[1:]


def records(handle):
    while True:
        header = handle.readline()
        if not header:
            return
        sequence = handle.readline().rstrip("\\n")
        handle.readline()
        quality = handle.readline().rstrip("\\n")
        yield header[1:].rstrip("\\n"), sequence, quality


def sam_line(record):
    name, sequence, quality = record
    return "\\t".join([name, "4", "*", "0", "0", "*", "*", "0", "0", sequence, quality]) + "\\n"


if args[0] == "aln":
    with open(args[args.index("-f") + 1], "w") as sai:
        sai.write("SAI\\n")
        sai.flush()
        with open(args[-1]) as reads:
            count = sum(1 for _ in records(reads))
        sai.write(str(count) + "\\n")
    sys.exit(0)

out = sys.stdout
out.write("@HD\\tVN:1.6\\n")
if args[0] == "samse":
    index, sai_paths, copies = args[1], args[2:3], args[3:4]
else:
    index, sai_paths, copies = args[1], args[2:4], args[4:6]
sai_files = [open(path) for path in sai_paths]
for sai in sai_files:
    assert sai.readline() == "SAI\\n"
copy_files = [open(path) for path in copies]
for mates in zip(*[records(handle) for handle in copy_files]):
    for record in mates:
        out.write(sam_line(record))
for handle in copy_files + sai_files:
    handle.read()
    handle.close()
out.flush()
"""


class StubHandle:
    def __init__(self, returncode: int = 0, output: bytes = b"") -> None:
        self.returncode = returncode
        self._stdout = io.BytesIO(output)
        self.terminated = False

    @property
    def stdout(self) -> io.BytesIO:
        return self._stdout

    def poll(self) -> int | None:
        return self.returncode

    def wait_for(self) -> int:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True


class StubExecutor:
    """Records commands instead of running them."""

    identity = "stub"

    def __init__(
        self,
        returncodes: Sequence[int] = (),
        *,
        available: bool = True,
        output: bytes = b"",
    ) -> None:
        self.returncodes = list(returncodes)
        self.available = available
        self.output = output
        self.commands: list[list[str]] = []
        self.installed: list[str] = []

    def install(self, executable: str) -> str:
        self.installed.append(executable)
        return f"/opt/stub/{executable}"

    def is_executable(self, executable: str) -> bool:
        return self.available

    def execute(
        self,
        command: Sequence[str],
        *,
        work_dir: Path | None = None,
        stdout: bool = False,
        stderr_file: Path | None = None,
        redirect_stderr: bool = False,
        files_used: Sequence[Path] = (),
    ) -> StubHandle:
        self.commands.append([str(arg) for arg in command])
        index = len(self.commands) - 1
        returncode = self.returncodes[index] if index < len(self.returncodes) else 0
        return StubHandle(returncode, self.output if stdout else b"")


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return EngineSettings(temp_dir=temp_dir, pipe_poll_interval=0.01)


@pytest.fixture
def fake_minimap2(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "minimap2"
    script.write_text(FAKE_MINIMAP2.format(python=sys.executable), encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.delenv("FAKE_MINIMAP2_EXIT", raising=False)
    monkeypatch.delenv("FAKE_MINIMAP2_SLEEP", raising=False)
    return script


@pytest.fixture
def minimap2_index_dir(tmp_path: Path) -> Path:
    index_dir = tmp_path / "index"
    index_dir.mkdir()
    (index_dir / "genome.mmi").write_text("fake minimap2 index\n", encoding="utf-8")
    return index_dir


@pytest.fixture
def fake_bwa(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    bin_dir = tmp_path / "bwa-bin"
    bin_dir.mkdir()
    script = bin_dir / "bwa"
    script.write_text(FAKE_BWA.format(python=sys.executable), encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return script
