"""Persistent certificate serial number counter."""

import fcntl
import logging
import threading
from contextlib import contextmanager
from pathlib import Path

from trustboot.exceptions import SerialAllocationError
from trustboot.utils.file_utils import FileUtils

logger = logging.getLogger("trustboot")

# X.509 serial numbers must be positive
INITIAL_SERIAL = 1


class SerialCounter:
    """
    File-backed monotonic counter.

    ``next()`` is a single critical section: a thread lock for callers in this
    process and an advisory ``flock`` on a sibling lock file for other
    processes sharing the CA directory. The new value is written with an
    atomic replace, so a crash never leaves a truncated record.
    """

    def __init__(self, path: Path, initial: int = INITIAL_SERIAL):
        self.path = path
        self.lock_path = path.with_name(path.name + ".lock")
        self.initial = initial
        self._lock = threading.Lock()

    @contextmanager
    def _exclusive(self):
        with self._lock:
            with open(self.lock_path, "a+") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def initialize(self) -> None:
        """Create the counter record if it does not exist yet."""
        try:
            FileUtils.ensure_directory(self.path.parent)
            with self._exclusive():
                if not self.path.exists():
                    FileUtils.atomic_write(self.path, f"{self.initial}\n".encode("ascii"))
                    logger.info(f"Initialized serial counter at {self.path}")
        except OSError as e:
            raise SerialAllocationError(f"Failed to initialize serial counter: {e}") from e

    def _read(self) -> int:
        try:
            text = self.path.read_text(encoding="ascii").strip()
        except OSError as e:
            raise SerialAllocationError(f"Failed to read serial counter: {e}") from e
        try:
            return int(text)
        except ValueError as e:
            raise SerialAllocationError(f"Corrupt serial counter {self.path}: {text!r}") from e

    def current(self) -> int:
        """Value the next allocation will return."""
        try:
            with self._exclusive():
                return self._read()
        except OSError as e:
            raise SerialAllocationError(f"Failed to read serial counter: {e}") from e

    def next(self) -> int:
        """
        Allocate a serial number.

        Returns:
            The pre-increment counter value

        Raises:
            SerialAllocationError: If the record cannot be read or written
        """
        try:
            with self._exclusive():
                value = self._read()
                FileUtils.atomic_write(self.path, f"{value + 1}\n".encode("ascii"))
        except OSError as e:
            raise SerialAllocationError(f"Failed to update serial counter: {e}") from e
        logger.debug(f"Allocated serial number {value}")
        return value
