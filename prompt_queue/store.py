"""
Durable job store.

Persists every job (prompts, results, status, counters, timestamps) to one
JSON file, always as full records. Loading applies resume and retention:
jobs caught mid-processing go back to pending, and completed jobs past the
retention window are dropped.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from pydantic import ValidationError

from prompt_queue.atomic import AtomicFileWriter
from prompt_queue.models import Job, JobStatus, parse_timestamp, utc_now


STORE_VERSION = "1.0"
DEFAULT_RETENTION_HOURS = 24.0


logger = logging.getLogger(__name__)


class JobStore:
    """File-backed key-value store of job records."""

    def __init__(self, state_file: Path, retention_hours: float = DEFAULT_RETENTION_HOURS):
        """
        Initialize store.

        Args:
            state_file: Path to the jobs JSON file
            retention_hours: Age after which completed jobs are discarded
        """
        self.state_file = Path(state_file)
        self.retention = timedelta(hours=retention_hours)

    def is_expired(self, job: Job, now: Optional[datetime] = None) -> bool:
        """True for completed jobs created before the retention window."""
        if job.is_active:
            return False
        now = now or datetime.now(timezone.utc)
        try:
            created = parse_timestamp(job.created_at)
        except ValueError:
            return False
        return now - created > self.retention

    def read(self) -> Dict[str, Job]:
        """
        Jobs exactly as stored, for inspection by other processes.

        Unreadable records are skipped with a warning.
        """
        data = AtomicFileWriter.read_json(self.state_file)
        if data is None:
            return {}

        if not isinstance(data, dict) or not isinstance(data.get("jobs"), dict):
            logger.warning(f"Unrecognized job store format: {self.state_file}")
            return {}

        jobs: Dict[str, Job] = {}
        for job_id, record in data["jobs"].items():
            try:
                job = Job.model_validate(record)
            except ValidationError as e:
                logger.warning(f"[{job_id}] Skipping unreadable job record: {e}")
                continue
            jobs[job.job_id] = job
        return jobs

    def load(self) -> Dict[str, Job]:
        """
        Load jobs in stored order for the worker.

        Jobs stored as processing are reset to pending with started_at
        cleared; their recorded results are kept. Expired jobs are dropped.

        Returns:
            Mapping of job_id to Job
        """
        now = datetime.now(timezone.utc)
        jobs: Dict[str, Job] = {}
        resumed = expired = 0

        for job in self.read().values():
            if job.status == JobStatus.PROCESSING:
                job.status = JobStatus.PENDING
                job.started_at = None
                resumed += 1
            elif self.is_expired(job, now):
                expired += 1
                continue

            jobs[job.job_id] = job

        logger.info(
            f"Loaded {len(jobs)} job(s) from {self.state_file} "
            f"({resumed} resumed, {expired} expired)"
        )
        return jobs

    def save(self, jobs: Iterable[Job]) -> None:
        """
        Write all non-expired jobs.

        Raises:
            OSError: If the file cannot be written
            ValueError: If a job cannot be encoded
        """
        now = datetime.now(timezone.utc)
        records = {
            job.job_id: job.to_record()
            for job in jobs
            if not self.is_expired(job, now)
        }
        AtomicFileWriter.write_json(self.state_file, {
            "version": STORE_VERSION,
            "updated_at": utc_now(),
            "jobs": records,
        })
