from __future__ import annotations

import threading
from pathlib import Path

from typer.testing import CliRunner

from mapperkit import __version__
from mapperkit.cli import app
from mapperkit.utils.io import create_zip

runner = CliRunner()


def _write_fastq(path: Path, prefix: str, count: int) -> Path:
    path.write_text(
        "".join(f"@{prefix}{i}\nACGTACGTAC\n+\nIIIIIIIIII\n" for i in range(count)),
        encoding="utf-8",
    )
    return path


def _sam_names(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.split("\t")[0] for line in lines if line and not line.startswith("@")]


def test_root_help_smoke() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "check" in result.output
    assert "index" in result.output
    assert "map" in result.output


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_map_without_index_is_a_usage_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["map", "--r1", str(tmp_path / "r1.fq")])
    assert result.exit_code == 2


def test_map_with_unknown_mapper(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["map", "--mapper", "hisat2", "--index", str(tmp_path / "i.zip"), "--r1", str(tmp_path / "r1.fq")],
    )
    assert result.exit_code == 1


def test_check_reports_missing_mappers(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    result = runner.invoke(app, ["check", "--mapper", "bwa"])
    assert result.exit_code == 0
    assert "BWA" in result.output
    assert "missing" in result.output


def test_index_then_map_end_to_end(tmp_path: Path, fake_minimap2: Path) -> None:
    genome = tmp_path / "ref.fa"
    genome.write_text(">chr1\nACGTACGTACGTACGT\n", encoding="utf-8")
    archive = tmp_path / "ref.minimap2.zip"
    config = tmp_path / "mapperkit.yaml"
    config.write_text(
        f"engine:\n  temp_dir: {tmp_path}\nmap:\n  mapper: minimap2\n  executor: path\n",
        encoding="utf-8",
    )

    indexed = runner.invoke(
        app,
        ["index", "--mapper", "minimap2", "--executor", "path", "--genome", str(genome), "--output", str(archive)],
    )
    assert indexed.exit_code == 0, indexed.stdout
    assert archive.exists()

    r1 = _write_fastq(tmp_path / "r1.fq", "a", 12)
    r2 = _write_fastq(tmp_path / "r2.fq", "b", 12)
    output = tmp_path / "pairs.sam"
    mapped = runner.invoke(
        app,
        ["map", "--config", str(config), "--index", str(archive), "--r1", str(r1), "--r2", str(r2), "-o", str(output)],
    )
    assert mapped.exit_code == 0, mapped.stdout
    assert len(_sam_names(output)) == 24
    assert (tmp_path / "ref.minimap2" / "ref.mmi").exists()

    streamed = runner.invoke(app, ["map", "--config", str(config), "--index", str(archive), "--r1", str(r1)])
    assert streamed.exit_code == 0
    assert sum(1 for line in streamed.stdout.splitlines() if line.startswith("a")) == 12

    file_mode = tmp_path / "file.sam"
    result = runner.invoke(
        app,
        ["map", "--config", str(config), "--index", str(archive), "--r1", str(r1), "--file-mode", "-o", str(file_mode)],
    )
    assert result.exit_code == 0
    assert _sam_names(file_mode) == [f"a{i}" for i in range(12)]


def _minimap2_archive(tmp_path: Path) -> Path:
    source = tmp_path / "built"
    source.mkdir()
    (source / "ref.mmi").write_text("fake minimap2 index\n", encoding="utf-8")
    return create_zip(source, tmp_path / "ref.minimap2.zip")


def _invoke_with_deadline(args: list[str], seconds: float = 30.0):  # type: ignore[no-untyped-def]
    results: list = []
    worker = threading.Thread(target=lambda: results.append(runner.invoke(app, args)), daemon=True)
    worker.start()
    worker.join(timeout=seconds)
    assert not worker.is_alive(), f"mapperkit {' '.join(args)} did not return within {seconds}s"
    return results[0]


def test_streamed_map_of_truncated_fastq_fails_without_hanging(tmp_path: Path, fake_minimap2: Path) -> None:
    archive = _minimap2_archive(tmp_path)
    work = tmp_path / "work"
    work.mkdir()
    config = tmp_path / "mapperkit.yaml"
    config.write_text(f"engine:\n  temp_dir: {work}\n", encoding="utf-8")
    reads = _write_fastq(tmp_path / "bad.fq", "a", 3)
    with reads.open("a", encoding="utf-8") as handle:
        handle.write("@a3\nACGT\n")

    result = _invoke_with_deadline(
        ["map", "--config", str(config), "--executor", "path", "--index", str(archive), "--r1", str(reads)]
    )

    assert result.exit_code == 1
    assert "Truncated FASTQ record" in " ".join(result.output.split())
    assert list(work.iterdir()) == []


def test_streamed_map_of_uneven_mates_fails_without_hanging(tmp_path: Path, fake_minimap2: Path) -> None:
    archive = _minimap2_archive(tmp_path)
    work = tmp_path / "work"
    work.mkdir()
    config = tmp_path / "mapperkit.yaml"
    config.write_text(f"engine:\n  temp_dir: {work}\n", encoding="utf-8")
    r1 = _write_fastq(tmp_path / "r1.fq", "a", 5)
    r2 = _write_fastq(tmp_path / "r2.fq", "b", 3)

    result = _invoke_with_deadline(
        ["map", "--config", str(config), "--executor", "path", "--index", str(archive), "--r1", str(r1), "--r2", str(r2)]
    )

    assert result.exit_code == 1
    assert "same number of reads" in " ".join(result.output.split())
    assert list(work.iterdir()) == []
