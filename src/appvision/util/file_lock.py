from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator


def _lock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
    else:
        import fcntl  # POSIX only

        fcntl.flock(fd, fcntl.LOCK_EX)


def _unlock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        import fcntl  # POSIX only

        fcntl.flock(fd, fcntl.LOCK_UN)


def acquire_lockfile(path: Path) -> IO[bytes]:
    """Open + exclusively lock a lockfile (blocking). Keep the handle open to hold it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    f = path.open("r+b") if path.exists() else path.open("w+b")
    try:
        # Region locks on Windows need at least one byte.
        f.seek(0, os.SEEK_END)
        if f.tell() <= 0:
            f.write(b"\0")
            f.flush()
        f.seek(0)
        _lock(f.fileno())
    except BaseException:
        f.close()
        raise
    return f


def release_lockfile(f: IO[bytes]) -> None:
    try:
        _unlock(f.fileno())
    finally:
        f.close()


@contextmanager
def locked(path: Path) -> Iterator[None]:
    f = acquire_lockfile(path)
    try:
        yield
    finally:
        release_lockfile(f)
