"""
Long-running prompt queue service.

Builds the service objects once, resumes persisted jobs, watches the inbox
for new batches and flushes state periodically. SIGTERM/SIGINT trigger a
final flush before exit; a prompt running at that moment is abandoned and
resumes on the next start.
"""

import asyncio
import concurrent.futures
import logging
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Optional

from prompt_queue.atomic import FileLock
from prompt_queue.config import Settings, load_settings
from prompt_queue.credentials import CredentialPool
from prompt_queue.executor import TaskExecutor, verify_tool_setup
from prompt_queue.inbox import InboxWatcher
from prompt_queue.manager import QueueManager
from prompt_queue.models import BatchRequest
from prompt_queue.notifier import WebhookNotifier
from prompt_queue.projects import ProjectRegistry
from prompt_queue.review import ReviewRecorder
from prompt_queue.store import JobStore


SUBMIT_TIMEOUT = 10.0  # seconds an inbox submission may wait for the event loop


logger = logging.getLogger("prompt-queue")


@dataclass
class _SubmitTicket:
    """Hand-off state of one inbox submission, guarded by the daemon submit lock."""

    job_id: Optional[str] = None
    abandoned: bool = False


def configure_logging(level: str = "INFO") -> None:
    """Log to stdout in the daemon's format."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Suppress verbose library logging
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_manager(settings: Settings, notifier: Optional[WebhookNotifier] = None) -> QueueManager:
    """Construct the queue manager and its collaborators from settings."""
    pool = CredentialPool(settings.credentials)
    executor = TaskExecutor(
        pool=pool,
        tool_command=settings.tool_command,
        model=settings.model,
        credential_env=settings.credential_env,
        default_timeout=settings.task_timeout,
        kill_grace=settings.kill_grace,
    )
    return QueueManager(
        executor=executor,
        store=JobStore(settings.jobs_file, retention_hours=settings.retention_hours),
        recorder=ReviewRecorder(settings.review_file),
        notifier=notifier or WebhookNotifier(timeout_seconds=settings.webhook_timeout),
        projects=ProjectRegistry(settings.projects_file),
        task_timeout=settings.task_timeout,
    )


class PromptQueueDaemon:
    """
    Runs the queue manager on one event loop.

    The inbox observer lives on its own thread and hands batches to the
    loop; nothing else touches queue state.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.lock = FileLock(settings.lock_file)
        self.manager: Optional[QueueManager] = None
        self.inbox: Optional[InboxWatcher] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop: Optional[asyncio.Event] = None
        self._submit_lock = threading.Lock()

    def start(self) -> None:
        """Acquire the instance lock and run until signalled."""
        logger.info("=" * 60)
        logger.info("Prompt Queue Daemon Starting")
        logger.info("=" * 60)

        if not self.lock.acquire(timeout=0):
            logger.error(f"Another instance is already running (lock file: {self.lock.lockfile})")
            sys.exit(1)

        try:
            asyncio.run(self._run())
        finally:
            self.lock.release()
            logger.info("Daemon stopped")

    def request_stop(self) -> None:
        """Signal handler: ask the main coroutine to shut down."""
        logger.info("Shutdown requested")
        if self._stop is not None:
            self._stop.set()

    def submit(self, request: BatchRequest) -> str:
        """
        Thread-safe submission used by the inbox observer.

        Raises:
            concurrent.futures.TimeoutError: If the loop did not take the batch
                within SUBMIT_TIMEOUT; the batch is then never queued
        """
        ticket = _SubmitTicket()
        future = asyncio.run_coroutine_threadsafe(self._submit(request, ticket), self._loop)
        try:
            return future.result(timeout=SUBMIT_TIMEOUT)
        except concurrent.futures.TimeoutError:
            with self._submit_lock:
                if ticket.job_id is not None:
                    return ticket.job_id
                ticket.abandoned = True
            raise

    async def _submit(self, request: BatchRequest, ticket: Optional[_SubmitTicket] = None) -> Optional[str]:
        with self._submit_lock:
            if ticket is not None and ticket.abandoned:
                logger.warning("Dropping inbox batch whose submitter timed out")
                return None
            job_id = self.manager.add_job(
                prompts=request.prompts,
                webhook_url=request.webhook_url,
                webhook_secret=request.webhook_secret,
                project_id=request.project_id,
            )
            if ticket is not None:
                ticket.job_id = job_id
            return job_id

    async def _run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()

        for signum in (signal.SIGTERM, signal.SIGINT):
            self._loop.add_signal_handler(signum, self.request_stop)

        self.manager = build_manager(self.settings)
        pool = self.manager.pool

        logger.info(f"State directory: {self.settings.state_dir}")
        logger.info(f"Tool command: {' '.join(self.settings.tool_command)}")
        logger.info(f"Credentials configured: {pool.size()}")

        available, problem = verify_tool_setup(pool, self.settings.tool_command)
        if not available:
            logger.warning(f"Tool not ready: {problem}")
            logger.warning("The daemon is running, but prompts will fail until this is fixed")

        if self.manager.start_worker():
            logger.info("Resuming persisted jobs")

        maintenance = asyncio.create_task(
            self.manager.run_maintenance(self.settings.flush_interval),
            name="prompt-queue-maintenance",
        )

        self.inbox = InboxWatcher(
            self.settings.resolved_inbox_dir,
            submit=self.submit,
            debounce_ms=self.settings.watch_debounce_ms,
        )
        # Watch before scanning so a file landing in between is not missed
        self.inbox.start()
        # Runs off-loop: submit() blocks on the loop
        waiting = await asyncio.to_thread(self.inbox.scan_existing)
        if waiting:
            logger.info(f"Queued {waiting} batch file(s) found in the inbox")

        try:
            await self._stop.wait()
        finally:
            logger.info("=" * 60)
            logger.info("Prompt Queue Daemon Shutting Down")
            logger.info("=" * 60)

            self.inbox.stop()
            maintenance.cancel()
            try:
                await maintenance
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Maintenance task failed: {e}", exc_info=True)
            await self.manager.shutdown()
            await self.manager.notifier.aclose()


def main(argv=None) -> None:
    """Daemon entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Prompt Queue Daemon")
    parser.add_argument("--env-file", default=None, help="Path to .env file")
    args = parser.parse_args(argv)

    settings = load_settings(args.env_file)
    configure_logging(settings.log_level)
    PromptQueueDaemon(settings).start()


if __name__ == "__main__":
    main()
