from __future__ import annotations

import os
from pathlib import Path
from typing import IO


class LockUnavailableError(RuntimeError):
    """Raised when another process already holds the lockfile."""


def _lock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        return
    import fcntl  # POSIX only

    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        return
    import fcntl  # POSIX only

    fcntl.flock(fd, fcntl.LOCK_UN)


def acquire_singleton(path: Path) -> IO[bytes]:
    """Take an exclusive non-blocking lock and record our pid in it.

    Keep the returned handle open for as long as the lock must be held.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    f = path.open("r+b") if path.exists() else path.open("w+b")
    try:
        f.seek(0, os.SEEK_END)
        if f.tell() <= 0:
            # Region locks on Windows need at least one byte.
            f.write(b"\0")
            f.flush()
        f.seek(0)
        _lock(f.fileno())
    except OSError as e:
        f.close()
        raise LockUnavailableError(str(e)) from e
    f.seek(0)
    f.truncate()
    f.write(str(os.getpid()).encode("ascii"))
    f.flush()
    return f


def release_singleton(f: IO[bytes]) -> None:
    try:
        _unlock(f.fileno())
    except Exception:
        pass
    try:
        f.close()
    except Exception:
        pass
