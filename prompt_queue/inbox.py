"""
Watchdog-based submission inbox.

Batch files (`*.json`) dropped into the inbox directory are validated and
submitted to the queue. Accepted files move to `accepted/<job_id>.json`,
invalid ones to `rejected/` next to an `.error` file explaining why.
"""

import json
import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional

from pydantic import ValidationError
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileCreatedEvent, FileMovedEvent

from prompt_queue.models import BatchRequest


ACCEPTED_DIR = "accepted"
REJECTED_DIR = "rejected"


logger = logging.getLogger(__name__)


class DebounceTracker:
    """
    Coalesces repeated events for the same file within a short window.
    """

    def __init__(self, debounce_ms: int = 500):
        self.debounce_seconds = debounce_ms / 1000.0
        self._last_seen: Dict[str, float] = {}

    def should_process(self, file_path: str) -> bool:
        """True unless the same file was seen within the window."""
        now = time.monotonic()
        last = self._last_seen.get(file_path)
        if last is not None and now - last < self.debounce_seconds:
            return False
        self._last_seen[file_path] = now
        return True

    def cleanup_old_events(self, max_age_seconds: float = 60.0) -> None:
        cutoff = time.monotonic() - max_age_seconds
        self._last_seen = {
            path: ts
            for path, ts in self._last_seen.items()
            if ts > cutoff
        }


class InboxWatcher(FileSystemEventHandler):
    """
    Watches the inbox directory and submits batch files.

    The submit callback receives a validated BatchRequest and returns the
    new job id. It is called from the observer thread.
    """

    def __init__(
        self,
        inbox_dir: Path,
        submit: Callable[[BatchRequest], str],
        debounce_ms: int = 500,
    ):
        """
        Initialize inbox watcher.

        Args:
            inbox_dir: Directory receiving batch files
            submit: Queues a batch and returns its job id
            debounce_ms: Debounce delay in milliseconds
        """
        super().__init__()

        self.inbox_dir = Path(inbox_dir)
        self.accepted_dir = self.inbox_dir / ACCEPTED_DIR
        self.rejected_dir = self.inbox_dir / REJECTED_DIR
        self.submit = submit
        self.debounce = DebounceTracker(debounce_ms)
        self._observer: Optional[Observer] = None
        # Startup scan and observer thread may see the same file
        self._process_lock = threading.Lock()

        for directory in (self.inbox_dir, self.accepted_dir, self.rejected_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def is_batch_file(path: Path) -> bool:
        """Visible *.json files directly inside the inbox."""
        return path.suffix == ".json" and not path.name.startswith(".")

    def on_created(self, event: FileCreatedEvent) -> None:
        if event.is_directory:
            return
        self._handle_event(Path(event.src_path))

    def on_moved(self, event: FileMovedEvent) -> None:
        # Atomic writers rename a temp file into place
        if event.is_directory:
            return
        self._handle_event(Path(event.dest_path))

    def _handle_event(self, path: Path) -> None:
        if path.parent.resolve() != self.inbox_dir.resolve() or not self.is_batch_file(path):
            return

        if not self.debounce.should_process(str(path)):
            logger.debug(f"Debounced event for: {path.name}")
            return

        try:
            self.process_file(path)
        except Exception as e:
            logger.error(f"Error processing inbox file {path.name}: {e}", exc_info=True)

        self.debounce.cleanup_old_events()

    def process_file(self, path: Path) -> Optional[str]:
        """
        Validate and submit one batch file.

        Returns:
            Job id if accepted, None if rejected or already gone
        """
        with self._process_lock:
            return self._process_file(path)

    def _process_file(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            request = BatchRequest.model_validate(data)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Rejected inbox file {path.name}: {e}")
            self._reject(path, str(e))
            return None

        try:
            job_id = self.submit(request)
        except Exception as e:
            logger.error(f"Could not queue {path.name}: {e}")
            self._reject(path, f"{type(e).__name__}: {e}")
            return None

        shutil.move(str(path), str(self.accepted_dir / f"{job_id}.json"))
        logger.info(f"[{job_id}] Accepted inbox file {path.name}")
        return job_id

    def _reject(self, path: Path, reason: str) -> None:
        target = self.rejected_dir / path.name
        shutil.move(str(path), str(target))
        target.with_suffix(".error").write_text(f"Error: {reason}\n", encoding="utf-8")

    def scan_existing(self) -> int:
        """
        Submit batch files already waiting in the inbox, in name order.

        Returns:
            Number of accepted files
        """
        accepted = 0
        for path in sorted(self.inbox_dir.glob("*.json")):
            if path.is_file() and self.is_batch_file(path):
                if self.process_file(path):
                    accepted += 1
        return accepted

    def start(self) -> None:
        """Start the watchdog observer on the inbox directory."""
        if self._observer is not None:
            logger.warning(f"Inbox already watched: {self.inbox_dir}")
            return

        self._observer = Observer()
        self._observer.schedule(self, str(self.inbox_dir), recursive=False)
        self._observer.start()
        logger.info(f"Watching inbox: {self.inbox_dir}")

    def stop(self) -> None:
        """Stop the observer."""
        if self._observer is None:
            return

        try:
            self._observer.stop()
            self._observer.join(timeout=5.0)
        finally:
            self._observer = None

    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()
