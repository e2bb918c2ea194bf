"""
Crash-safe JSON files and the single-instance lock.

The job store, review store and inbox all go through AtomicFileWriter so a
crash mid-write never leaves a truncated JSON file behind. FileLock keeps a
second daemon from sharing the same state directory.
"""

import os
import fcntl
import json
import logging
import tempfile
import time
from pathlib import Path
from typing import Any, Optional


logger = logging.getLogger(__name__)


class AtomicFileWriter:
    """
    JSON persistence that never leaves a half-written file.

    Writes to a temporary file in the target directory, fsyncs it, then
    replaces the target with os.replace().
    """

    @staticmethod
    def write_json(filepath: Path, data: Any, indent: int = 2) -> None:
        """
        Replace a JSON file in one step.

        Args:
            filepath: Destination (parent directories are created)
            data: JSON-serializable value
            indent: Pretty-print indentation

        Raises:
            OSError: If the write fails (the temp file is removed first)
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode='w',
                encoding='utf-8',
                dir=filepath.parent,
                prefix=f".{filepath.name}.",
                suffix='.tmp',
                delete=False
            ) as tmp_file:
                temp_path = Path(tmp_file.name)
                json.dump(data, tmp_file, indent=indent, default=str)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            os.replace(temp_path, filepath)

        except BaseException:
            if temp_path is not None and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    logger.warning(f"Could not remove temp file: {temp_path}")
            raise

    @staticmethod
    def read_json(filepath: Path, default: Any = None) -> Any:
        """
        Load a JSON file, falling back to a default.

        Args:
            filepath: Source file
            default: Value returned if the file is missing or unreadable

        Returns:
            Decoded value, or `default` when missing or unreadable
        """
        filepath = Path(filepath)

        if not filepath.exists():
            return default

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning(f"Could not read {filepath}: {e}")
            return default


class FileLock:
    """
    Advisory flock on a lock file, held for the lifetime of the daemon.

    Usage:
        lock = FileLock(state_dir / "prompt-queue.lock")
        if not lock.acquire(timeout=0):
            sys.exit(1)
        try:
            ...
        finally:
            lock.release()
    """

    def __init__(self, lockfile: Path):
        """
        Initialize file lock.

        Args:
            lockfile: Path to lock file (created if needed)
        """
        self.lockfile = Path(lockfile)
        self.lockfile.parent.mkdir(parents=True, exist_ok=True)
        self.fd: Optional[Any] = None

    def acquire(self, timeout: float = 10.0) -> bool:
        """
        Acquire exclusive lock, retrying until timeout.

        Args:
            timeout: Maximum seconds to wait (0 tries exactly once)

        Returns:
            True if lock acquired, False if held elsewhere
        """
        deadline = time.monotonic() + timeout

        while True:
            fd = open(self.lockfile, 'a+')
            try:
                fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except (BlockingIOError, PermissionError):
                fd.close()
                if time.monotonic() >= deadline:
                    return False
                time.sleep(0.1)
                continue

            fd.seek(0)
            fd.truncate()
            fd.write(f"{os.getpid()}\n")
            fd.flush()
            self.fd = fd
            return True

    def release(self) -> None:
        """Release the lock if held."""
        if self.fd is None:
            return

        try:
            fcntl.flock(self.fd.fileno(), fcntl.LOCK_UN)
        finally:
            self.fd.close()
            self.fd = None

        try:
            self.lockfile.unlink()
        except FileNotFoundError:
            pass
