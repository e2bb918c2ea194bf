"""Test fixtures for prompt-queue tests."""

import asyncio
import pytest
import sys
import tempfile
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from prompt_queue.credentials import CredentialPool
from prompt_queue.executor import TaskExecutor
from prompt_queue.manager import QueueManager
from prompt_queue.models import ExecutionOutcome, Job, TaskResult
from prompt_queue.notifier import DeliveryResult
from prompt_queue.review import ReviewRecorder
from prompt_queue.store import JobStore


async def no_sleep(seconds: float) -> None:
    """Replacement for asyncio.sleep in retry tests."""
    no_sleep.calls.append(seconds)


no_sleep.calls = []


def python_command(script: str) -> List[str]:
    """Tool command running a Python snippet; the prompt arrives as sys.argv[1]."""
    return [sys.executable, "-c", script]


class FakeNotifier:
    """Records webhook events instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.prompt_events = []
        self.job_events = []

    async def notify_prompt_completed(self, job: Job, result: TaskResult) -> DeliveryResult:
        self.prompt_events.append((job.job_id, result))
        if self.fail:
            raise ConnectionError("webhook endpoint unreachable")
        return DeliveryResult(success=True, status_code=200)

    async def notify_job_completed(self, job: Job) -> DeliveryResult:
        self.job_events.append(job.snapshot())
        if self.fail:
            raise ConnectionError("webhook endpoint unreachable")
        return DeliveryResult(success=True, status_code=200)

    async def aclose(self) -> None:
        pass


class StubExecutor:
    """
    Stands in for TaskExecutor.

    `respond` maps a prompt to an ExecutionOutcome (or raises).
    """

    def __init__(self, respond: Optional[Callable[[str], ExecutionOutcome]] = None):
        self.pool = CredentialPool(["key-a"])
        self.respond = respond or (lambda prompt: ExecutionOutcome(success=True, output=f"echo: {prompt}"))
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def run(self, prompt, working_directory=None, deadline=None):
        self.calls.append((prompt, working_directory, deadline))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            return self.respond(prompt)
        finally:
            self.active -= 1


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def state_dir(temp_dir):
    path = temp_dir / "state"
    path.mkdir()
    return path


@pytest.fixture
def job_store(state_dir):
    return JobStore(state_dir / "jobs.json")


@pytest.fixture
def recorder(state_dir):
    return ReviewRecorder(state_dir / "review.json")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def stub_executor():
    return StubExecutor()


@pytest.fixture
def make_stub_executor():
    """StubExecutor class, for tests that script their own responses."""
    return StubExecutor


@pytest.fixture
def failing_notifier():
    return FakeNotifier(fail=True)


@pytest.fixture
def fake_sleep():
    """Recording sleep; `fake_sleep.calls` lists requested delays."""
    no_sleep.calls.clear()
    return no_sleep


@pytest.fixture
def python_tool():
    """Builds a tool command running a Python snippet."""
    return python_command


@pytest.fixture
def make_manager(job_store, recorder, notifier, stub_executor):
    """Factory building a QueueManager over the temp state directory."""

    def _make(executor=None, store=None, projects=None, task_timeout=5.0, notifier_override=None):
        return QueueManager(
            executor=executor or stub_executor,
            store=store or job_store,
            recorder=recorder,
            notifier=notifier_override or notifier,
            projects=projects,
            task_timeout=task_timeout,
        )

    return _make


@pytest.fixture
def make_executor():
    """Factory building a real TaskExecutor around a Python snippet."""

    def _make(script: str, credentials=("key-a",), **kwargs):
        no_sleep.calls.clear()
        kwargs.setdefault("sleep", no_sleep)
        kwargs.setdefault("kill_grace", 0.5)
        return TaskExecutor(
            pool=CredentialPool(list(credentials)),
            tool_command=python_command(script),
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_job():
    return Job(
        job_id="job-001",
        prompts=["first prompt", "second prompt"],
        webhook_url="https://hooks.example.com/prompts",
        webhook_secret="s3cret",
    )
