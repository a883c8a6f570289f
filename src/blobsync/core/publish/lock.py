"""Advisory publish lock: serializes publishers across threads and processes."""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

# Per-process threading locks keyed by resolved directory path, with the
# number of holders and waiters; an entry is dropped when that reaches zero
_thread_locks: dict[str, tuple[threading.Lock, int]] = {}
_thread_locks_guard = threading.Lock()


def lock_path_for(final_dir: Path) -> Path:
    """The lock file sits next to the final directory, never inside it."""
    final_dir = Path(os.path.realpath(final_dir))
    return final_dir.parent / f".{final_dir.name}.lock"


def _thread_lock_key(final_dir: Path) -> str:
    return os.path.normcase(os.path.realpath(final_dir))


def _checkout_thread_lock(key: str) -> threading.Lock:
    with _thread_locks_guard:
        lock, users = _thread_locks.get(key, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _thread_locks[key] = (lock, users + 1)
        return lock


def _return_thread_lock(key: str) -> None:
    with _thread_locks_guard:
        lock, users = _thread_locks[key]
        if users <= 1:
            del _thread_locks[key]
        else:
            _thread_locks[key] = (lock, users - 1)


try:
    import fcntl

    def _acquire(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _release(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

except ImportError:
    import msvcrt

    def _acquire(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _release(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)


@contextmanager
def publish_lock(final_dir: Path) -> Iterator[Path]:
    """
    Hold an exclusive lock for publishing into ``final_dir``.

    Yields:
        Path of the lock file
    """
    key = _thread_lock_key(final_dir)
    tlock = _checkout_thread_lock(key)
    try:
        with tlock:
            path = lock_path_for(final_dir)
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0))
            try:
                _acquire(fd)
                try:
                    yield path
                finally:
                    _release(fd)
            finally:
                os.close(fd)
    finally:
        _return_thread_lock(key)


__all__ = ["lock_path_for", "publish_lock"]
