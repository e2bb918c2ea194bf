"""
Prompt Queue - durable sequential execution of prompt batches.

Runs each prompt through an external text-generation CLI, rotating API keys
on quota errors, and reports results to a webhook.

State lives in the state directory:
- jobs.json    - every job with its results
- review.json  - prompts that missed their deadline
- inbox/       - batch files waiting to be queued
"""

__version__ = "1.0.0"

from prompt_queue.models import (
    Job,
    JobStatus,
    TaskResult,
    TaskResultStatus,
    ExecutionOutcome,
    ReviewRecord,
    BatchRequest,
)

from prompt_queue.credentials import CredentialPool
from prompt_queue.classifier import FailureKind, RetryRule, classify_failure, DEFAULT_RETRY_POLICY
from prompt_queue.executor import TaskExecutor, CredentialUnavailableError
from prompt_queue.review import ReviewRecorder
from prompt_queue.store import JobStore
from prompt_queue.notifier import WebhookNotifier
from prompt_queue.manager import QueueManager
from prompt_queue.config import Settings, load_settings

__all__ = [
    # Models
    "Job",
    "JobStatus",
    "TaskResult",
    "TaskResultStatus",
    "ExecutionOutcome",
    "ReviewRecord",
    "BatchRequest",
    # Components
    "CredentialPool",
    "FailureKind",
    "RetryRule",
    "classify_failure",
    "DEFAULT_RETRY_POLICY",
    "TaskExecutor",
    "CredentialUnavailableError",
    "ReviewRecorder",
    "JobStore",
    "WebhookNotifier",
    "QueueManager",
    # Config
    "Settings",
    "load_settings",
]
