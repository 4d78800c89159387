"""Single-instance lock for uupd.

A well-known file carries an advisory exclusive ``flock``. Only the lock
state matters: the file itself is left in place after release, so a stale
file from an earlier run is harmless.
"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import os
import struct
from pathlib import Path
from typing import IO, TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)

DEFAULT_LOCKFILE = Path("/run/uupd.lock")
DEFAULT_MAX_TRIES = 5
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_WAIT_INTERVAL = 2.0
OSTREE_SYSROOT_LOCK = Path("/sysroot/ostree/lock")


class LockError(Exception):
    """Lock file could not be opened, locked or released."""


class AlreadyRunningError(LockError):
    """Another process holds the lock."""

    def __init__(self, path: str, tries: int) -> None:
        """Initialize the error.

        Args:
            path: Lock file path.
            tries: Number of attempts made.
        """
        self.path = path
        self.tries = tries
        super().__init__(f"could not acquire lock on {path} after {tries} attempts")


def open_lockfile(path: Path | str = DEFAULT_LOCKFILE) -> IO[bytes]:
    """Open the lock file, creating it if needed.

    Raises:
        LockError: If the file cannot be opened.
    """
    try:
        fd = os.open(path, os.O_APPEND | os.O_WRONLY | os.O_CREAT, 0o666)
    except OSError as e:
        raise LockError(f"cannot open lock file {path}: {e}") from e
    return os.fdopen(fd, "ab")


async def acquire_lock(
    file: IO[bytes],
    max_tries: int = DEFAULT_MAX_TRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
) -> None:
    """Take the exclusive lock, retrying a bounded number of times.

    Args:
        file: Open lock file.
        max_tries: Attempts before giving up.
        retry_delay: Seconds to sleep after each failed attempt.

    Raises:
        AlreadyRunningError: If the lock is still held after ``max_tries``.
    """
    log = logger.bind(path=file.name)

    for attempt in range(1, max_tries + 1):
        try:
            fcntl.flock(file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            log.debug("lock_busy", attempt=attempt, max_tries=max_tries)
            await asyncio.sleep(retry_delay)
            continue
        log.debug("lock_acquired", attempt=attempt)
        return

    raise AlreadyRunningError(str(file.name), max_tries)


def release_lock(file: IO[bytes]) -> None:
    """Unlock and close the lock file. The file is not deleted.

    Raises:
        LockError: If unlocking fails. The file is closed regardless.
    """
    try:
        fcntl.flock(file.fileno(), fcntl.LOCK_UN)
    except OSError as e:
        raise LockError(f"cannot release lock on {file.name}: {e}") from e
    finally:
        file.close()
    logger.debug("lock_released", path=file.name)


def is_file_locked(file: IO[bytes] | IO[str]) -> bool:
    """Report whether another process holds a write lock on ``file``.

    Uses ``F_GETLK``, which queries the lock table without taking or
    dropping any lock. Only POSIX record locks held by other processes are
    visible this way.

    Returns:
        True if a conflicting lock exists, False otherwise or on error.
    """
    query = struct.pack("hhllhh", fcntl.F_WRLCK, os.SEEK_SET, 0, 0, 0, 0)
    try:
        answer = fcntl.fcntl(file.fileno(), fcntl.F_GETLK, query)
    except OSError:
        return False
    lock_type = struct.unpack("hhllhh", answer)[0]
    return lock_type != fcntl.F_UNLCK


@contextlib.asynccontextmanager
async def hold_lock(
    path: Path | str = DEFAULT_LOCKFILE,
    max_tries: int = DEFAULT_MAX_TRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
) -> AsyncIterator[IO[bytes]]:
    """Hold the single-instance lock for the duration of the block.

    The lock is released on every exit path, including exceptions and
    cancellation.

    Yields:
        The open, locked file.

    Raises:
        AlreadyRunningError: If another instance holds the lock.
    """
    file = open_lockfile(path)
    try:
        await acquire_lock(file, max_tries=max_tries, retry_delay=retry_delay)
    except BaseException:
        file.close()
        raise

    try:
        yield file
    finally:
        release_lock(file)


async def wait_until_unlocked(
    path: Path | str,
    poll_interval: float = DEFAULT_WAIT_INTERVAL,
) -> int:
    """Block until ``path`` is absent or no longer locked by another process.

    The lock state is only probed, never taken. A poll happens before the
    first check so a lock taken just before the call is still seen.

    Args:
        path: Lock file to watch.
        poll_interval: Seconds between probes.

    Returns:
        Number of probes that found the file locked.
    """
    waited = 0
    while True:
        await asyncio.sleep(poll_interval)
        try:
            file = open(path, "rb")  # noqa: SIM115
        except OSError:
            return waited
        with file:
            if not is_file_locked(file):
                return waited
        waited += 1
        logger.info("waiting_for_lockfile", path=str(path))
