from __future__ import annotations

import gzip
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Iterable, Iterator

from mapperkit.exceptions import MapperConfigurationError, MapperIOError


class FastqFormat(Enum):
    """FASTQ quality encodings.

    Each member carries its canonical name, aliases, the first Illumina
    pipeline version using it, the score range, ASCII offset and whether
    scores are Phred scores.
    """

    FASTQ_SANGER = (
        "fastq-sanger",
        ("sanger", "fastq-illumina-1.8", "illumina-1.8", "1.8"),
        "1.8",
        0,
        93,
        33,
        True,
    )
    FASTQ_SOLEXA = (
        "fastq-solexa",
        ("solexa", "fastq-solexa-1.0", "solexa-1.0", "1.0"),
        "1.0",
        -5,
        62,
        64,
        False,
    )
    FASTQ_ILLUMINA = (
        "fastq-illumina-1.3",
        ("fastq-illumina", "illumina", "illumina-1.3", "1.3"),
        "1.3",
        0,
        62,
        64,
        True,
    )
    FASTQ_ILLUMINA_1_5 = (
        "fastq-illumina-1.5",
        ("illumina-1.5", "1.5"),
        "1.5",
        2,
        62,
        64,
        True,
    )

    def __init__(
        self,
        format_name: str,
        aliases: tuple[str, ...],
        illumina_version: str,
        score_min: int,
        score_max: int,
        ascii_offset: int,
        phred_score: bool,
    ) -> None:
        self.format_name = format_name
        self.aliases = aliases
        self.illumina_version = illumina_version
        self.score_min = score_min
        self.score_max = score_max
        self.ascii_offset = ascii_offset
        self.phred_score = phred_score

    @property
    def char_min(self) -> str:
        return chr(self.ascii_offset + self.score_min)

    @property
    def char_max(self) -> str:
        return chr(self.ascii_offset + self.score_max)

    def is_char_valid(self, char: str) -> bool:
        return self.char_min <= char <= self.char_max

    @classmethod
    def from_name(cls, name: str) -> "FastqFormat":
        key = name.strip().lower()
        for member in cls:
            if key == member.format_name or key in member.aliases:
                return member
        raise MapperConfigurationError(f"Unknown FASTQ format: {name}")


@dataclass(frozen=True, slots=True)
class ReadSequence:
    """One sequencing read."""

    name: str
    sequence: str
    quality: str

    def to_fastq(self, *, repeat_id: bool = True) -> str:
        return to_fastq(self.name, self.sequence, self.quality, repeat_id=repeat_id)


def to_fastq(name: str, sequence: str, quality: str, *, repeat_id: bool = True) -> str:
    """Render one 4-line FASTQ block, without the trailing newline."""

    return f"@{name}\n{sequence}\n+{name if repeat_id else ''}\n{quality}"


def _open_text(path: Path) -> IO[str]:
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="latin-1")
    return path.open("r", encoding="latin-1")


def parse_fastq(lines: Iterable[str], *, source: str = "<stream>") -> Iterator[ReadSequence]:
    """Parse 4-line FASTQ records, skipping blank lines between records."""

    block: list[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not block and not line:
            continue
        block.append(line)
        if len(block) < 4:
            continue

        header, sequence, separator, quality = block
        block = []
        if not header.startswith("@") or not separator.startswith("+"):
            raise MapperIOError(f"Invalid FASTQ record in {source}: {header!r}")
        if len(sequence) != len(quality):
            raise MapperIOError(
                f"Sequence and quality lengths differ in {source} for read {header[1:]!r}"
            )
        yield ReadSequence(name=header[1:], sequence=sequence, quality=quality)

    if block:
        raise MapperIOError(f"Truncated FASTQ record at the end of {source}")


class FastqReader:
    """Iterate over the reads of a plain or gzip-compressed FASTQ file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    def __iter__(self) -> Iterator[ReadSequence]:
        if self._handle is None:
            self._handle = _open_text(self.path)
        return parse_fastq(self._handle, source=str(self.path))

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "FastqReader":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def read_fastq_records(path: Path) -> list[ReadSequence]:
    with FastqReader(path) as reader:
        return list(reader)
