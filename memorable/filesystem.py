"""
File system operations for original image files.
"""

import os
import shutil
import tempfile
from typing import Optional

from .config import AppConfig
from .errors import IOFailure, NotFound
from .logging_setup import get_logger

logger = get_logger(__name__)

JPEG_EXTENSIONS = ('.jpg', '.jpeg')


def is_jpeg_path(path: str) -> bool:
    """Whether the file extension denotes a JPEG container."""
    return os.path.splitext(path)[1].lower() in JPEG_EXTENSIONS


class FilesystemHelper:
    """Helper class for reading, backing up and rewriting original files."""

    def __init__(self, config: Optional[AppConfig] = None):
        """
        Initialize the filesystem helper.

        Args:
            config: Application configuration (for the backup suffix)
        """
        self.config = config or AppConfig()
        self.backup_suffix = self.config.backup_suffix

    def backup_path(self, path: str) -> str:
        return f"{path}{self.backup_suffix}"

    def file_size(self, path: str) -> int:
        """
        Get the size of a file in bytes.

        Raises:
            NotFound: If the file does not exist
            IOFailure: If the file cannot be stat'ed
        """
        try:
            return os.stat(path).st_size
        except FileNotFoundError:
            raise NotFound(f"File not found: {path}")
        except OSError as e:
            raise IOFailure(f"Cannot stat {path}: {e}")

    def read_bytes(self, path: str) -> bytes:
        """
        Read a whole file.

        Raises:
            NotFound: If the file does not exist
            IOFailure: If the file cannot be read
        """
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            raise NotFound(f"File not found: {path}")
        except OSError as e:
            raise IOFailure(f"Cannot read {path}: {e}")

    def create_backup(self, path: str) -> str:
        """
        Copy a file to its backup sibling, replacing any previous backup.

        Args:
            path: Path of the original file

        Returns:
            Path of the backup file

        Raises:
            IOFailure: If the copy fails
        """
        backup = self.backup_path(path)
        try:
            shutil.copy2(path, backup)
        except OSError as e:
            raise IOFailure(f"Failed to create backup {backup}: {e}")
        logger.debug(f"Created backup {backup}")
        return backup

    def replace_contents(self, path: str, data: bytes) -> None:
        """
        Replace a file's contents through a temporary sibling and an atomic rename.

        The original is either fully replaced or left as it was.

        Raises:
            IOFailure: If writing or renaming fails
        """
        directory = os.path.dirname(os.path.abspath(path))
        base_name = os.path.basename(path)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{base_name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, 'wb') as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            shutil.copymode(path, tmp_path)
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise IOFailure(f"Failed to write {path}: {e}")
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
