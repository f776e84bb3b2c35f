from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from typing import BinaryIO, Callable, Protocol

from mapperkit.exceptions import MapperIOError
from mapperkit.logging import get_logger

logger = get_logger("engine.writers")

FASTQ_ENCODING = "latin-1"

_END = None


class FastqWriter(Protocol):
    def write(self, fastq_record: str) -> None: ...

    def close(self) -> None: ...


class FastqWriterNoThread:
    """Write FASTQ records synchronously, opening the target on first use."""

    def __init__(self, opener: Callable[[], BinaryIO], name: str) -> None:
        self._opener = opener
        self.name = name
        self._stream: BinaryIO | None = None
        self._closed = False

    def _ensure_open(self) -> BinaryIO:
        if self._stream is None:
            self._stream = self._opener()
        return self._stream

    def write(self, fastq_record: str) -> None:
        if self._closed:
            raise MapperIOError(f"Writer {self.name} is closed")
        try:
            self._ensure_open().write(fastq_record.encode(FASTQ_ENCODING) + b"\n")
        except OSError as exc:
            raise MapperIOError(f"Error while writing reads to {self.name}: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            # Opening an untouched FIFO lets the reader see EOF.
            stream = self._ensure_open()
            stream.close()
        except OSError as exc:
            raise MapperIOError(f"Error while closing {self.name}: {exc}") from exc


class FastqWriterThread:
    """Write FASTQ records through a bounded queue drained by a worker thread.

    Records are grouped into chunks of about `chunk_size` characters. The
    queue holds at most `capacity` chunks; when it is full `write()` blocks,
    retrying every `poll_interval` seconds, until the worker catches up.
    Errors of the worker are raised by the next `write()` or `close()`.
    """

    def __init__(
        self,
        opener: Callable[[], BinaryIO],
        name: str,
        *,
        capacity: int = 100000,
        chunk_size: int = 1000,
        poll_interval: float = 0.05,
    ) -> None:
        self._opener = opener
        self.name = name
        self.chunk_size = chunk_size
        self.poll_interval = poll_interval
        self._queue: queue.Queue[bytes | None] = queue.Queue(maxsize=capacity)
        self._done: Future[int] = Future()
        self._buffer: list[bytes] = []
        self._buffered = 0
        self._closed = False
        self._thread = threading.Thread(target=self._drain, name=f"fastq-writer {name}", daemon=True)
        self._thread.start()

    def _drain(self) -> None:
        written = 0
        try:
            with self._opener() as stream:
                while True:
                    chunk = self._queue.get()
                    if chunk is _END:
                        break
                    stream.write(chunk)
                    written += len(chunk)
        except (OSError, MapperIOError) as exc:
            logger.debug("Writer %s failed: %s", self.name, exc)
            self._done.set_exception(exc)
            return
        self._done.set_result(written)

    def _raise_if_failed(self) -> None:
        if self._done.done() and self._done.exception() is not None:
            exc = self._done.exception()
            if isinstance(exc, MapperIOError):
                raise exc
            raise MapperIOError(f"Error while writing reads to {self.name}: {exc}") from exc

    def _put(self, item: bytes | None) -> None:
        while True:
            self._raise_if_failed()
            try:
                self._queue.put(item, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def _flush(self) -> None:
        if not self._buffer:
            return
        chunk = b"".join(self._buffer)
        self._buffer = []
        self._buffered = 0
        self._put(chunk)

    def write(self, fastq_record: str) -> None:
        if self._closed:
            raise MapperIOError(f"Writer {self.name} is closed")
        self._raise_if_failed()
        data = fastq_record.encode(FASTQ_ENCODING) + b"\n"
        self._buffer.append(data)
        self._buffered += len(data)
        if self._buffered >= self.chunk_size:
            self._flush()

    def close(self) -> None:
        """Flush pending records, stop the worker and wait for it."""

        if self._closed:
            return
        self._closed = True
        try:
            self._flush()
            self._put(_END)
        finally:
            # _put only gives up once the worker has stopped
            self._thread.join()
        self._raise_if_failed()

    @property
    def bytes_written(self) -> int:
        """Bytes handed to the target, known once the writer is closed."""

        if self._done.done() and self._done.exception() is None:
            return self._done.result()
        return 0
