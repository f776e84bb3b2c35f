from mapperkit.engine.counters import MAPPER_INPUT_READS_COUNTER, CounterIncrementer, Counters
from mapperkit.engine.process import MapperProcess, PipelinePlan, ProcessOutputStream, ProcessState
from mapperkit.engine.writers import FastqWriterNoThread, FastqWriterThread

__all__ = [
    "MAPPER_INPUT_READS_COUNTER",
    "CounterIncrementer",
    "Counters",
    "FastqWriterNoThread",
    "FastqWriterThread",
    "MapperProcess",
    "PipelinePlan",
    "ProcessOutputStream",
    "ProcessState",
]
