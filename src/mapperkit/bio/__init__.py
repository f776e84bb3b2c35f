"""Sequencing read model shared by the engine and its callers."""

from mapperkit.bio.fastq import FastqFormat, FastqReader, ReadSequence, to_fastq

__all__ = ["FastqFormat", "FastqReader", "ReadSequence", "to_fastq"]
