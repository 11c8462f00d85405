"""Single-writer lock for a data root.

Combines an in-process mutex keyed by the resolved root with an advisory
fcntl lock on ``<root>/.import.lock``, so concurrent imports are serialized
across threads and processes alike.
"""

import fcntl
import os
import threading
import time
from pathlib import Path
from typing import Self

from chat_strata.errors import ImportBusyError
from chat_strata.logging import get_logger

logger = get_logger("lock")

_registry_lock = threading.Lock()
_process_locks: dict[str, threading.Lock] = {}

POLL_INTERVAL_SECONDS = 0.1


def _process_lock(key: str) -> threading.Lock:
    with _registry_lock:
        lock = _process_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _process_locks[key] = lock
        return lock


class DataRootLock:
    """Exclusive import lock for one data root.

    Usage:
        with DataRootLock(layout.lock_path, timeout=5):
            ...
    """

    def __init__(self, lock_path: Path, timeout: float = 0.0) -> None:
        """Initialize the lock.

        Args:
            lock_path: Lock file path inside the data root
            timeout: Seconds to wait for a running import before giving up
        """
        self._lock_path = lock_path
        self._timeout = max(0.0, timeout)
        self._thread_lock = _process_lock(str(lock_path.resolve()))
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Acquire the lock or raise ImportBusyError after the timeout."""
        deadline = time.monotonic() + self._timeout
        if self._timeout > 0:
            acquired = self._thread_lock.acquire(timeout=self._timeout)
        else:
            acquired = self._thread_lock.acquire(blocking=False)
        if not acquired:
            raise ImportBusyError(f"Another import is running for {self._lock_path.parent}")

        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._lock_path, os.O_RDWR | os.O_CREAT, 0o644)
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        os.close(fd)
                        raise ImportBusyError(
                            f"Another import is running for {self._lock_path.parent}"
                        ) from None
                    time.sleep(POLL_INTERVAL_SECONDS)
        except BaseException:
            self._thread_lock.release()
            raise

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        logger.debug("Acquired data root lock: path=%s", self._lock_path)

    def release(self) -> None:
        """Release the lock if held."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
        finally:
            self._fd = None
            self._thread_lock.release()
        logger.debug("Released data root lock: path=%s", self._lock_path)

    def __enter__(self) -> Self:
        """Enter context manager, acquiring the lock."""
        self.acquire()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, releasing the lock."""
        self.release()


def is_locked(lock_path: Path) -> bool:
    """Check whether some process currently holds the lock file."""
    if not lock_path.exists():
        return False
    fd = os.open(lock_path, os.O_RDWR)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)
