"""PID lock file that keeps overlapping sync runs from touching the same working copy.

The lock file holds the decimal PID of its owner, and the owner keeps an
exclusive ``flock`` on it for the whole run. The flock is what serializes
competing runs; the PID is what operators (and older, flock-unaware sync
scripts) read. A run killed mid-flight drops its flock with the process, so
the next invocation can reclaim the file straight away.
"""

from __future__ import annotations

import fcntl
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ridgesync.errors import LockHeldError

logger = logging.getLogger(__name__)

# Reopen attempts when the file we locked was unlinked by its releasing owner.
_OPEN_ATTEMPTS = 5


@dataclass(frozen=True)
class LockHandle:
    """Proof of ownership of a lock file for the duration of one run."""

    lock_file_path: Path
    owner_pid: int


def pid_alive(pid: int) -> bool:
    """Return True when a process with ``pid`` exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


def _parse_pid(content: str) -> Optional[int]:
    try:
        return int(content.strip())
    except ValueError:
        return None


def read_owner(lock_path: Path) -> Optional[int]:
    """Return the PID recorded in ``lock_path``, or None if absent or unreadable."""
    try:
        content = lock_path.read_text(encoding="ascii")
    except (FileNotFoundError, UnicodeDecodeError):
        return None
    return _parse_pid(content)


def _same_file(fd: int, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


def _read_fd(fd: int) -> str:
    os.lseek(fd, 0, os.SEEK_SET)
    return os.read(fd, 64).decode("ascii", errors="replace")


class PidLock:
    """Exclusive, process-scoped lock backed by a PID file.

    Use as a context manager so the file is removed on every exit path::

        with PidLock(config.lock_path) as handle:
            ...
        # lock file is gone here, whatever happened inside
    """

    def __init__(self, lock_path: str | Path, pid: int | None = None):
        self.lock_path = Path(lock_path)
        self.pid = pid if pid is not None else os.getpid()
        self.handle: Optional[LockHandle] = None
        self._fd: Optional[int] = None

    def acquire(self) -> LockHandle:
        """Take the lock or raise :class:`LockHeldError` if a live process owns it."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(_OPEN_ATTEMPTS):
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                raise LockHeldError(str(self.lock_path), read_owner(self.lock_path) or 0)

            if not _same_file(fd, self.lock_path):
                # Locked an inode its previous owner has since unlinked.
                os.close(fd)
                continue

            try:
                return self._claim(fd)
            except BaseException:
                os.close(fd)
                raise

        raise LockHeldError(str(self.lock_path), read_owner(self.lock_path) or 0)

    def _claim(self, fd: int) -> LockHandle:
        content = _read_fd(fd)
        owner = _parse_pid(content)
        if owner is not None and pid_alive(owner):
            # Held by a process that does not use flock.
            raise LockHeldError(str(self.lock_path), owner)
        if content.strip():
            logger.warning("Reclaiming stale lock file %s (recorded PID: %s)", self.lock_path, owner)

        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, f"{self.pid}\n".encode("ascii"))

        self._fd = fd
        self.handle = LockHandle(lock_file_path=self.lock_path, owner_pid=self.pid)
        logger.debug("Acquired lock %s", self.lock_path)
        return self.handle

    def release(self) -> None:
        """Remove the lock file if this instance still owns it, then drop the flock."""
        if self.handle is None or self._fd is None:
            return
        fd, self._fd = self._fd, None
        self.handle = None
        try:
            if _same_file(fd, self.lock_path) and _parse_pid(_read_fd(fd)) == self.pid:
                self.lock_path.unlink(missing_ok=True)
            else:
                logger.warning("Lock file %s no longer records PID %s, leaving it", self.lock_path, self.pid)
        finally:
            os.close(fd)
        logger.debug("Released lock %s", self.lock_path)

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()
