from __future__ import annotations

import errno
import fcntl
import os
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import BinaryIO, Callable

from mapperkit.exceptions import MapperIOError


def create_named_pipe(path: Path) -> Path:
    """Create a FIFO special file, failing if anything already uses the name."""

    try:
        os.mkfifo(path, 0o600)
    except FileExistsError as exc:
        raise MapperIOError(f"Cannot create named pipe, file already exists: {path}") from exc
    except OSError as exc:
        raise MapperIOError(f"Cannot create named pipe {path}: {exc}") from exc
    return path


def is_named_pipe(path: Path) -> bool:
    try:
        return path.is_fifo()
    except OSError:
        return False


def _clear_nonblocking(fd: int) -> None:
    flags = fcntl.fcntl(fd, fcntl.F_GETFL)
    fcntl.fcntl(fd, fcntl.F_SETFL, flags & ~os.O_NONBLOCK)


def open_fifo_for_writing(
    path: Path,
    *,
    alive: Callable[[], bool],
    poll_interval: float = 0.05,
    stop: threading.Event | None = None,
) -> BinaryIO:
    """Open the write end of a FIFO once a reader has attached to it.

    The open is retried while `alive()` reports that a consumer may still
    come. Regular files open immediately.
    """

    waiter = stop or threading.Event()
    while True:
        try:
            fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as exc:
            if exc.errno != errno.ENXIO:
                raise MapperIOError(f"Cannot open {path} for writing: {exc}") from exc
            if not alive():
                raise MapperIOError(f"No process is reading the named pipe: {path}") from exc
            if waiter.wait(poll_interval):
                raise MapperIOError(f"Writing to {path} has been interrupted") from exc
            continue

        _clear_nonblocking(fd)
        return os.fdopen(fd, "wb")


def open_fifo_for_reading(
    path: Path,
    *,
    alive: Callable[[], bool],
    poll_interval: float = 0.05,
) -> BinaryIO:
    """Open the read end of a FIFO fed by a process that may die early.

    The blocking open runs in a helper thread. When the producer exits
    without ever opening the pipe, the helper is released by briefly
    attaching a writer, which yields an empty stream.
    """

    opened: Future[BinaryIO] = Future()

    def _open() -> None:
        try:
            opened.set_result(open(path, "rb"))
        except OSError as exc:
            opened.set_exception(MapperIOError(f"Cannot open {path} for reading: {exc}"))

    threading.Thread(target=_open, name=f"fifo-reader {path.name}", daemon=True).start()

    while True:
        try:
            return opened.result(timeout=poll_interval)
        except FutureTimeoutError:
            if alive():
                continue
        try:
            fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError:
            continue
        os.close(fd)
