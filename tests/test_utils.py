from __future__ import annotations

import json
import logging
import sys
import zipfile
from pathlib import Path

import pytest

from mapperkit.engine.counters import MAPPER_INPUT_READS_COUNTER, Counters
from mapperkit.exceptions import MapperIOError
from mapperkit.logging import JsonLogFormatter, get_logger
from mapperkit.utils.io import create_zip, remove_file, unique_file_by_extension, unzip
from mapperkit.utils.subprocess import (
    CommandExecutionError,
    command_lines_to_string,
    run_command,
    split_arguments,
)


def test_unique_file_by_extension(tmp_path: Path) -> None:
    (tmp_path / "genome.mmi").write_text("", encoding="utf-8")
    (tmp_path / "genome.fa").write_text("", encoding="utf-8")
    assert unique_file_by_extension(tmp_path, ".mmi", label="Minimap2") == tmp_path / "genome.mmi"

    with pytest.raises(MapperIOError, match='Unable to get index file for BWA with ".bwt"'):
        unique_file_by_extension(tmp_path, ".bwt", label="BWA")

    (tmp_path / "other.mmi").write_text("", encoding="utf-8")
    with pytest.raises(MapperIOError, match="More than one index file"):
        unique_file_by_extension(tmp_path, ".mmi", label="Minimap2")

    with pytest.raises(MapperIOError, match="index directory does not exist"):
        unique_file_by_extension(tmp_path / "missing", ".mmi", label="Minimap2")


def test_zip_round_trip_keeps_layout(tmp_path: Path) -> None:
    source = tmp_path / "index"
    (source / "sub").mkdir(parents=True)
    (source / "genome.1.bt2").write_bytes(b"\x00" * 64)
    (source / "sub" / "SA").write_text("suffix array", encoding="utf-8")

    archive = create_zip(source, tmp_path / "archives" / "index.zip", stored=True)
    with zipfile.ZipFile(archive) as zipped:
        assert zipped.namelist() == ["genome.1.bt2", "sub/SA"]
        assert {info.compress_type for info in zipped.infolist()} == {zipfile.ZIP_STORED}

    target = tmp_path / "unzipped"
    unzip(archive, target)
    assert (target / "sub" / "SA").read_text(encoding="utf-8") == "suffix array"

    broken = tmp_path / "broken.zip"
    broken.write_text("not a zip", encoding="utf-8")
    with pytest.raises(MapperIOError, match="Unable to unzip"):
        unzip(broken, target)


def test_remove_file_logs_instead_of_raising(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("tests")
    victim = tmp_path / "reads.fq"
    victim.write_text("", encoding="utf-8")

    assert remove_file(victim, logger)
    assert not victim.exists()
    assert remove_file(victim, logger)
    assert remove_file(None, logger)

    directory = tmp_path / "not-a-file"
    directory.mkdir()
    with caplog.at_level(logging.WARNING, logger="mapperkit.tests"):
        assert not remove_file(directory, logger)
    assert "Cannot remove temporary file" in caplog.text


def test_run_command_reports_failures() -> None:
    result = run_command([sys.executable, "-c", "print('hello')"])
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"

    split = run_command([sys.executable, "-c", "import sys; sys.stderr.write('warn'); print('out')"])
    assert (split.stdout.strip(), split.stderr) == ("out", "warn")
    with pytest.raises(TypeError):
        run_command([sys.executable, "-c", "pass"], merge_stderr=True)  # type: ignore[call-arg]

    with pytest.raises(CommandExecutionError, match="exit code 4"):
        run_command([sys.executable, "-c", "import sys; sys.exit(4)"])

    unchecked = run_command([sys.executable, "-c", "import sys; sys.exit(4)"], check=False)
    assert unchecked.returncode == 4

    with pytest.raises(CommandExecutionError, match="Unable to execute"):
        run_command(["definitely-not-a-mapper-binary"])


def test_command_line_rendering() -> None:
    assert command_lines_to_string(None) == ""
    assert command_lines_to_string([["bwa", "aln", "ref"], [], ["bwa", "samse", "a b"]]) == "bwa aln ref ; bwa samse 'a b'"
    assert split_arguments(None) == []
    assert split_arguments("-x 'two words'") == ["-x", "two words"]


def test_json_log_formatter_includes_thread_and_mapper() -> None:
    record = logging.LogRecord("mapperkit.engine", logging.INFO, __file__, 1, "wrote %d reads", (3,), None)
    record.mapper = "BWA"

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["message"] == "wrote 3 reads"
    assert payload["mapper"] == "BWA"
    assert payload["thread"] == record.threadName
    assert payload["level"] == "INFO"


def test_get_logger_is_namespaced() -> None:
    assert get_logger("engine").name == "mapperkit.engine"
    assert get_logger("mapperkit.cli").name == "mapperkit.cli"


def test_counters_group_values() -> None:
    counters = Counters()
    counters.incr_counter("BWA", MAPPER_INPUT_READS_COUNTER, 2)
    counters.incr_counter("BWA", MAPPER_INPUT_READS_COUNTER, 3)
    counters.incr_counter("sample1", MAPPER_INPUT_READS_COUNTER, 1)

    assert counters.get("BWA", MAPPER_INPUT_READS_COUNTER) == 5
    assert counters.get("STAR", MAPPER_INPUT_READS_COUNTER) == 0
    assert counters.as_dict() == {
        "BWA": {MAPPER_INPUT_READS_COUNTER: 5},
        "sample1": {MAPPER_INPUT_READS_COUNTER: 1},
    }
