from __future__ import annotations

import threading
from collections import defaultdict
from typing import Protocol

MAPPER_INPUT_READS_COUNTER = "mapper input reads"


class CounterIncrementer(Protocol):
    def incr_counter(self, group: str, counter: str, value: int) -> None: ...


class Counters:
    """Thread-safe in-memory counter sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[tuple[str, str], int] = defaultdict(int)

    def incr_counter(self, group: str, counter: str, value: int) -> None:
        with self._lock:
            self._values[(group, counter)] += value

    def get(self, group: str, counter: str) -> int:
        with self._lock:
            return self._values.get((group, counter), 0)

    def as_dict(self) -> dict[str, dict[str, int]]:
        with self._lock:
            result: dict[str, dict[str, int]] = {}
            for (group, counter), value in sorted(self._values.items()):
                result.setdefault(group, {})[counter] = value
            return result
