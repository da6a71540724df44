"""Cross-platform advisory file locking for the audit ledger.

Appends take an exclusive lock; reads take a shared lock where the platform has
one (fcntl). On Windows msvcrt only offers exclusive locks, so readers serialize
with writers there.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol, TextIO, cast

# msvcrt.locking() needs a byte count; one byte at offset 0 acts as the file mutex.
LOCK_LENGTH_BYTES: int = 1


class _LockStrategy(Protocol):
    def acquire(self, file_handle: TextIO, *, shared: bool) -> None:
        ...

    def release(self, file_handle: TextIO) -> None:
        ...


class _MsvcrtModule(Protocol):
    LK_LOCK: int
    LK_UNLCK: int

    def locking(self, fd: int, mode: int, nbytes: int) -> None:
        ...


class _FcntlModule(Protocol):
    LOCK_EX: int
    LOCK_SH: int
    LOCK_UN: int

    def flock(self, fd: int, operation: int) -> None:
        ...


class _WindowsLockStrategy:
    def __init__(self) -> None:
        import msvcrt
        self._msvcrt: _MsvcrtModule = cast(_MsvcrtModule, msvcrt)

    def acquire(self, file_handle: TextIO, *, shared: bool) -> None:
        self._msvcrt.locking(file_handle.fileno(), self._msvcrt.LK_LOCK, LOCK_LENGTH_BYTES)

    def release(self, file_handle: TextIO) -> None:
        self._msvcrt.locking(file_handle.fileno(), self._msvcrt.LK_UNLCK, LOCK_LENGTH_BYTES)


class _UnixLockStrategy:
    def __init__(self) -> None:
        import fcntl
        self._fcntl: _FcntlModule = cast(_FcntlModule, fcntl)

    def acquire(self, file_handle: TextIO, *, shared: bool) -> None:
        mode = self._fcntl.LOCK_SH if shared else self._fcntl.LOCK_EX
        self._fcntl.flock(file_handle.fileno(), mode)

    def release(self, file_handle: TextIO) -> None:
        self._fcntl.flock(file_handle.fileno(), self._fcntl.LOCK_UN)


_LOCK_STRATEGY: _LockStrategy
if os.name == "nt":
    _LOCK_STRATEGY = _WindowsLockStrategy()
else:
    _LOCK_STRATEGY = _UnixLockStrategy()


@contextmanager
def locked_file(path: Path, *, shared: bool = False) -> Iterator[TextIO]:
    """Open ``path`` in a+ mode under an advisory lock.

    The handle is positioned at end of file once the lock is held. Callers that
    read must seek back to the start themselves.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handle = path.open("a+", encoding="utf-8", newline="")
    try:
        file_handle.seek(0)
        _LOCK_STRATEGY.acquire(file_handle, shared=shared)
        file_handle.seek(0, os.SEEK_END)
        yield file_handle
    finally:
        try:
            file_handle.seek(0)
            _LOCK_STRATEGY.release(file_handle)
        finally:
            file_handle.close()
