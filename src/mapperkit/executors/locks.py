from __future__ import annotations

import fcntl
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

_registry_guard = threading.Lock()
_named_locks: dict[str, threading.Lock] = {}


def named_lock(key: str) -> threading.Lock:
    """Return the process-wide mutex registered under `key`."""

    with _registry_guard:
        lock = _named_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _named_locks[key] = lock
        return lock


@contextmanager
def file_lock(lock_path: Path, *, delete: bool = True) -> Iterator[None]:
    """Hold an exclusive `flock` on `lock_path` across processes.

    The lock file is removed on release, so a waiter that wakes up on an
    unlinked inode reopens the path and locks again.
    """

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    while True:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            if _same_file(fd, lock_path):
                break
        except BaseException:
            os.close(fd)
            raise
        os.close(fd)

    try:
        yield
    finally:
        try:
            if delete:
                try:
                    lock_path.unlink()
                except FileNotFoundError:
                    pass
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


def _same_file(fd: int, path: Path) -> bool:
    try:
        current = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_ino, held.st_dev) == (current.st_ino, current.st_dev)
