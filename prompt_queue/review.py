"""
Review log for prompts that missed their deadline.

Timed-out prompts are never retried automatically; they are written here
for manual follow-up. The file is a JSON list rewritten atomically on every
new entry.
"""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from prompt_queue.atomic import AtomicFileWriter
from prompt_queue.models import ReviewRecord


logger = logging.getLogger(__name__)


class ReviewRecorder:
    """
    Append-only store of ReviewRecords keyed by (job_id, index).

    Recording the same timed-out prompt twice is a no-op.
    """

    def __init__(self, review_file: Path):
        """
        Initialize recorder.

        Args:
            review_file: Path to the review JSON file
        """
        self.review_file = Path(review_file)

    def load(self) -> List[ReviewRecord]:
        """Read all records; malformed entries are skipped."""
        records, _ = self._read_existing()
        return records

    def _read_existing(self) -> Tuple[List[ReviewRecord], bool]:
        """
        Read the review file.

        Returns:
            Tuple of (valid records, lossy). lossy is True when the file
            exists but some of its content could not be kept.
        """
        if not self.review_file.exists():
            return [], False

        data = AtomicFileWriter.read_json(self.review_file)
        if not isinstance(data, list):
            logger.warning(f"Ignoring malformed review file: {self.review_file}")
            return [], True

        records = []
        lossy = False
        for entry in data:
            try:
                records.append(ReviewRecord.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping invalid review entry: {e}")
                lossy = True
        return records, lossy

    def _backup(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        backup = self.review_file.with_name(f"{self.review_file.name}.{stamp}.bak")
        shutil.copy2(self.review_file, backup)
        return backup

    def record(
        self,
        job_id: str,
        prompt: str,
        index: int,
        project_directory: Optional[str] = None,
        webhook_url: Optional[str] = None,
        reason: str = "Deadline exceeded",
    ) -> bool:
        """
        Record a timed-out prompt.

        A review file that could only be partly read is copied to a
        timestamped `.bak` next to it before being rewritten.

        Returns:
            True if a new record was written, False if it already existed

        Raises:
            OSError: If the review file cannot be backed up or written
        """
        records, lossy = self._read_existing()
        if any(r.key == (job_id, index) for r in records):
            logger.info(f"[{job_id}] Prompt {index + 1} already recorded for review")
            return False

        if lossy:
            backup = self._backup()
            logger.error(
                f"Review file {self.review_file} had unreadable content; "
                f"original kept at {backup.name}"
            )

        records.append(ReviewRecord(
            job_id=job_id,
            index=index,
            prompt=prompt,
            project_directory=project_directory,
            webhook_url=webhook_url,
            reason=reason,
        ))
        AtomicFileWriter.write_json(
            self.review_file,
            [r.model_dump(mode="json") for r in records],
        )
        logger.warning(f"[{job_id}] Prompt {index + 1} recorded for manual review: {reason}")
        return True
