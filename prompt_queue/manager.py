"""
Queue manager: job lifecycle and the sequential worker loop.

Jobs move pending -> processing -> completed. A single worker task drains
them one at a time in submission order, running every prompt of a job
before starting the next job. All mutation happens on the event loop that
owns the manager; readers get deep-copied snapshots.

State is persisted after every change. Interrupted jobs resume from the
first prompt without a recorded result, so a restart never executes a
prompt whose result is already stored.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from prompt_queue.credentials import CredentialPool
from prompt_queue.executor import TaskExecutor, CredentialUnavailableError, DEFAULT_TASK_TIMEOUT
from prompt_queue.models import (
    Job, JobStatus, TaskResult, TaskResultStatus, ExecutionOutcome, utc_now
)
from prompt_queue.notifier import WebhookNotifier
from prompt_queue.projects import ProjectRegistry
from prompt_queue.review import ReviewRecorder
from prompt_queue.store import JobStore


DEFAULT_FLUSH_INTERVAL = 30.0  # seconds


logger = logging.getLogger(__name__)


class QueueManager:
    """
    Owns all jobs and the single worker that executes them.

    Construct once per process and hand the instance to whatever accepts
    submissions or answers status queries.
    """

    def __init__(
        self,
        executor: TaskExecutor,
        store: JobStore,
        recorder: ReviewRecorder,
        notifier: WebhookNotifier,
        projects: Optional[ProjectRegistry] = None,
        task_timeout: float = DEFAULT_TASK_TIMEOUT,
    ):
        """
        Initialize the manager and load persisted jobs.

        Args:
            executor: Runs individual prompts
            store: Durable job store
            recorder: Review log for timed-out prompts
            notifier: Webhook sender
            projects: Project registry for working directories
            task_timeout: Deadline for every prompt, in seconds
        """
        self.executor = executor
        self.store = store
        self.recorder = recorder
        self.notifier = notifier
        self.projects = projects
        self.task_timeout = task_timeout

        self.jobs: Dict[str, Job] = self.store.load()
        self.processing = False
        self.current_job_id: Optional[str] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def pool(self) -> CredentialPool:
        return self.executor.pool

    # Submission and status

    def add_job(
        self,
        prompts: List[str],
        webhook_url: str,
        webhook_secret: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> str:
        """
        Queue a batch of prompts.

        Must be called from the event loop that owns the manager.

        Returns:
            The new job id
        """
        job_id = uuid.uuid4().hex
        while job_id in self.jobs:
            job_id = uuid.uuid4().hex

        project_directory = None
        if project_id:
            project_directory = self._resolve_project(project_id)

        job = Job(
            job_id=job_id,
            prompts=list(prompts),
            webhook_url=webhook_url,
            webhook_secret=webhook_secret,
            project_id=project_id,
            project_directory=project_directory,
        )
        self.jobs[job_id] = job
        logger.info(f"[{job_id}] Job queued with {job.total} prompt(s)")

        self.flush()
        self.start_worker()
        return job_id

    def _resolve_project(self, project_id: str) -> Optional[str]:
        if self.projects is None:
            logger.warning(f"Project {project_id} given but no project registry configured")
            return None

        try:
            directory = self.projects.get_directory(project_id)
        except (OSError, KeyError, TypeError) as e:
            logger.warning(f"Project {project_id} lookup failed: {e}")
            return None

        if directory is None:
            logger.warning(f"Project {project_id} not found, running without project directory")
        return directory

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of one job, or None if unknown."""
        job = self.jobs.get(job_id)
        return job.snapshot() if job else None

    def list_jobs(self) -> List[Dict[str, Any]]:
        """Snapshots of all jobs, most recently created first."""
        ordered = sorted(
            reversed(list(self.jobs.values())),
            key=lambda j: j.created_at,
            reverse=True,
        )
        return [job.snapshot() for job in ordered]

    def health(self) -> Dict[str, Any]:
        """Worker, queue and credential pool status."""
        counts = {status.value: 0 for status in JobStatus}
        for job in self.jobs.values():
            counts[job.status] += 1

        return {
            "processing": self.processing,
            "current_job": self.current_job_id,
            "jobs": counts,
            "credentials": {
                "size": self.pool.size(),
                "current_index": self.pool.current_index(),
            },
        }

    # Worker

    def start_worker(self) -> bool:
        """
        Start the worker unless one is already running.

        Returns:
            True if a new worker was started
        """
        if self.processing:
            return False
        if not any(job.is_active for job in self.jobs.values()):
            return False

        self.processing = True
        self._worker = asyncio.get_running_loop().create_task(
            self._process_queue(), name="prompt-queue-worker"
        )
        return True

    async def join(self) -> None:
        """Wait until the worker has drained every job."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    def _next_job(self) -> Optional[Job]:
        for job in self.jobs.values():
            if job.is_active:
                return job
        return None

    async def _process_queue(self) -> None:
        """Run jobs one at a time until none are pending."""
        logger.info("Worker started")
        try:
            while True:
                job = self._next_job()
                if job is None:
                    break
                await self._process_job(job)
        except Exception as e:
            logger.error(f"Worker stopped on unexpected error: {e}", exc_info=True)
            self.flush()
        finally:
            self.processing = False
            self.current_job_id = None
            logger.info("Worker idle")

    async def _process_job(self, job: Job) -> None:
        """Execute every remaining prompt of a job, then complete it."""
        job_id = job.job_id
        self.current_job_id = job_id

        job.status = JobStatus.PROCESSING
        if job.started_at is None:
            job.started_at = utc_now()
        self.flush()

        first = job.next_index
        if first:
            logger.info(f"[{job_id}] Resuming at prompt {first + 1}/{job.total}")
        else:
            logger.info(f"[{job_id}] Processing {job.total} prompt(s)")

        for index in range(first, job.total):
            prompt = job.prompts[index]
            logger.info(f"[{job_id}] Running prompt {index + 1}/{job.total}")

            result = await self._run_prompt(job, index, prompt)
            job.record_result(result)
            self.flush()

            try:
                await self.notifier.notify_prompt_completed(job, result)
            except Exception as e:
                logger.error(f"[{job_id}] prompt.completed webhook for prompt {index + 1} failed: {e}")

        job.status = JobStatus.COMPLETED
        job.completed_at = utc_now()
        self.flush()
        logger.info(f"[{job_id}] Job completed: {job.completed} succeeded, {job.failed} failed")

        try:
            await self.notifier.notify_job_completed(job)
        except Exception as e:
            logger.error(f"[{job_id}] job.completed webhook failed: {e}")

    async def _run_prompt(self, job: Job, index: int, prompt: str) -> TaskResult:
        """Execute one prompt and turn the outcome into a TaskResult."""
        start = time.monotonic()

        try:
            outcome = await self.executor.run(prompt, job.project_directory, self.task_timeout)
        except CredentialUnavailableError as e:
            logger.error(f"[{job.job_id}] {e}")
            return self._failed_result(prompt, index, str(e), time.monotonic() - start)
        except Exception as e:
            logger.error(f"[{job.job_id}] Prompt {index + 1} raised: {e}", exc_info=True)
            return self._failed_result(
                prompt, index, f"{type(e).__name__}: {e}", time.monotonic() - start
            )

        if outcome.timeout:
            status = TaskResultStatus.TIMEOUT
            self._record_review(job, index, prompt, outcome)
        elif outcome.success:
            status = TaskResultStatus.COMPLETED
        else:
            status = TaskResultStatus.FAILED

        return TaskResult(
            prompt=prompt,
            index=index,
            status=status,
            output=outcome.output,
            error=outcome.error,
            duration_seconds=round(outcome.duration_seconds, 3),
            attempts=outcome.attempts,
            credential_index=outcome.credential_index,
            quota_exhausted=outcome.quota_exhausted,
            transient_fault=outcome.transient_fault,
        )

    @staticmethod
    def _failed_result(prompt: str, index: int, error: str, duration: float) -> TaskResult:
        return TaskResult(
            prompt=prompt,
            index=index,
            status=TaskResultStatus.FAILED,
            error=error,
            duration_seconds=round(duration, 3),
            attempts=0,
        )

    def _record_review(self, job: Job, index: int, prompt: str, outcome: ExecutionOutcome) -> None:
        try:
            self.recorder.record(
                job_id=job.job_id,
                prompt=prompt,
                index=index,
                project_directory=job.project_directory,
                webhook_url=job.webhook_url,
                reason=outcome.error or "Deadline exceeded",
            )
        except (OSError, ValueError) as e:
            logger.error(f"[{job.job_id}] Could not write review record for prompt {index + 1}: {e}")

    # Persistence and maintenance

    def flush(self) -> bool:
        """
        Persist every job.

        Returns:
            False if the write failed (logged, in-memory state unaffected)
        """
        try:
            self.store.save(self.jobs.values())
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Failed to persist jobs to {self.store.state_file}: {e}")
            return False

    def clean_old_jobs(self) -> int:
        """
        Drop completed jobs past the retention window.

        Returns:
            Number of jobs removed
        """
        expired = [job_id for job_id, job in self.jobs.items() if self.store.is_expired(job)]
        for job_id in expired:
            del self.jobs[job_id]
            logger.info(f"[{job_id}] Removed expired job")
        return len(expired)

    async def run_maintenance(self, interval: float = DEFAULT_FLUSH_INTERVAL) -> None:
        """Periodically sweep expired jobs and flush state, until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.clean_old_jobs()
            self.flush()

    async def shutdown(self) -> None:
        """Abandon the in-flight prompt and write a final snapshot."""
        if self._worker is not None and not self._worker.done():
            logger.info(f"Stopping worker (current job: {self.current_job_id})")
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self.flush()
