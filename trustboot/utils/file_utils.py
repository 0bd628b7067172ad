"""File system utilities."""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger("trustboot")

PRIVATE_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644


class FileUtils:
    """Utility class for file operations."""

    @staticmethod
    def ensure_directory(path: Path, mode: int = 0o755) -> None:
        """
        Ensure directory exists, create if not.

        Args:
            path: Directory path to ensure
            mode: Permissions for newly created directories
        """
        path.mkdir(mode=mode, parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {path}")

    @staticmethod
    def read_binary_file(path: Path) -> bytes:
        """
        Read file contents as bytes.

        Args:
            path: File path to read

        Returns:
            File contents as bytes
        """
        with open(path, "rb") as f:
            return f.read()

    @staticmethod
    def write_binary_file(path: Path, content: bytes, mode: int = PUBLIC_FILE_MODE) -> None:
        """
        Write binary content to file with the given permissions.

        Args:
            path: File path to write
            content: Binary content to write
            mode: File permissions, applied even when the file already exists
        """
        FileUtils.ensure_directory(path.parent)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(content)
        logger.debug(f"Wrote binary file: {path}")

    @staticmethod
    def write_exclusive(path: Path, content: bytes, mode: int = PRIVATE_FILE_MODE) -> None:
        """
        Create a new file, failing if it already exists.

        Raises:
            FileExistsError: If the path is taken
        """
        FileUtils.ensure_directory(path.parent)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        logger.debug(f"Created file: {path}")

    @staticmethod
    def atomic_write(path: Path, content: bytes, mode: int = PUBLIC_FILE_MODE) -> None:
        """
        Replace file contents atomically.

        Readers see either the old or the new content, never a partial write.
        """
        FileUtils.ensure_directory(path.parent)
        fd, tmp_path = tempfile.mkstemp(prefix=".tmp.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                os.fchmod(f.fileno(), mode)
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
