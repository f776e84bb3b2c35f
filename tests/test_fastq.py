from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from mapperkit.bio.fastq import FastqFormat, FastqReader, ReadSequence, parse_fastq, read_fastq_records, to_fastq
from mapperkit.exceptions import MapperConfigurationError, MapperIOError


def test_fastq_format_lookup_by_name_and_alias() -> None:
    assert FastqFormat.from_name("fastq-sanger") is FastqFormat.FASTQ_SANGER
    assert FastqFormat.from_name(" Illumina ") is FastqFormat.FASTQ_ILLUMINA
    assert FastqFormat.from_name("1.5") is FastqFormat.FASTQ_ILLUMINA_1_5
    assert FastqFormat.from_name("solexa") is FastqFormat.FASTQ_SOLEXA

    with pytest.raises(MapperConfigurationError, match="Unknown FASTQ format"):
        FastqFormat.from_name("phred-42")


def test_fastq_format_score_ranges() -> None:
    sanger = FastqFormat.FASTQ_SANGER
    assert sanger.ascii_offset == 33
    assert sanger.char_min == "!"
    assert sanger.is_char_valid("I")

    solexa = FastqFormat.FASTQ_SOLEXA
    assert solexa.char_min == ";"
    assert not solexa.phred_score
    assert not solexa.is_char_valid("!")


def test_to_fastq_renders_four_lines() -> None:
    assert to_fastq("r1", "ACGT", "IIII") == "@r1\nACGT\n+r1\nIIII"
    assert ReadSequence("r2", "AC", "II").to_fastq(repeat_id=False) == "@r2\nAC\n+\nII"


def test_parse_fastq_reads_records_and_rejects_truncated_input() -> None:
    records = list(parse_fastq(["@a\n", "ACGT\n", "+\n", "IIII\n", "@b\n", "GG\n", "+b\n", "##\n"]))
    assert records == [ReadSequence("a", "ACGT", "IIII"), ReadSequence("b", "GG", "##")]

    with pytest.raises(MapperIOError):
        list(parse_fastq(["@a\n", "ACGT\n", "+\n"]))


def test_fastq_reader_handles_gzip(tmp_path: Path) -> None:
    path = tmp_path / "reads.fq.gz"
    with gzip.open(path, "wt", encoding="utf-8") as handle:
        handle.write("@r1\nACGT\n+\nIIII\n@r2\nTTTT\n+\n####\n")

    with FastqReader(path) as reader:
        names = [read.name for read in reader]
    assert names == ["r1", "r2"]
    assert len(read_fastq_records(path)) == 2
