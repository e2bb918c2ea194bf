"""
Data models for the prompt queue.

Defines Pydantic models for jobs, task results, execution outcomes,
review records and submitted batches.
"""

from enum import Enum
from urllib.parse import urlparse
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from pydantic import (
    BaseModel, Field, SecretStr, ConfigDict, computed_field, field_validator
)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class JobStatus(str, Enum):
    """Job lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class TaskResultStatus(str, Enum):
    """Terminal status of a single task within a job."""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class TaskResult(BaseModel):
    """
    Result of executing one prompt of a job.

    Appended to the job once and never modified afterwards.
    """

    prompt: str
    index: int = Field(..., ge=0, description="Zero-based position of the prompt in its job")
    status: TaskResultStatus
    output: str = ""
    error: Optional[str] = None
    duration_seconds: float = 0.0
    timestamp: str = Field(default_factory=utc_now)

    # Execution diagnostics
    attempts: int = 1
    credential_index: Optional[int] = None
    quota_exhausted: bool = False
    transient_fault: bool = False

    model_config = ConfigDict(use_enum_values=True, frozen=True)

    @property
    def succeeded(self) -> bool:
        return self.status == TaskResultStatus.COMPLETED.value


class Job(BaseModel):
    """
    A submitted batch of prompts sharing one webhook target.

    Only the queue manager mutates a job; readers get snapshots.
    """

    job_id: str = Field(..., description="Unique job identifier")
    prompts: List[str] = Field(..., min_length=1, description="Prompts in submission order")

    # Notification target
    webhook_url: str
    webhook_secret: Optional[SecretStr] = Field(default=None, repr=False)

    # Working directory resolved from the project registry at submission
    project_id: Optional[str] = None
    project_directory: Optional[str] = None

    status: JobStatus = JobStatus.PENDING
    results: List[TaskResult] = Field(default_factory=list)
    completed: int = 0
    failed: int = 0

    # Timestamps
    created_at: str = Field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    @computed_field
    @property
    def total(self) -> int:
        return len(self.prompts)

    @property
    def next_index(self) -> int:
        """Position of the first prompt without a recorded result."""
        return len(self.results)

    @property
    def is_active(self) -> bool:
        """True while the job still needs the worker."""
        return self.status in (JobStatus.PENDING.value, JobStatus.PROCESSING.value)

    def record_result(self, result: TaskResult) -> None:
        """Append a result and update the counters."""
        if result.index != self.next_index:
            raise ValueError(
                f"Result index {result.index} does not follow {self.next_index} in job {self.job_id}"
            )
        self.results.append(result)
        if result.succeeded:
            self.completed += 1
        else:
            self.failed += 1

    def to_record(self) -> Dict[str, Any]:
        """Full serialization for the durable store (includes the secret)."""
        data = self.model_dump(mode="json")
        data["webhook_secret"] = (
            self.webhook_secret.get_secret_value() if self.webhook_secret else None
        )
        return data

    def snapshot(self) -> Dict[str, Any]:
        """Serialization for readers; the webhook secret is never included."""
        return self.model_dump(mode="json", exclude={"webhook_secret"})


class ExecutionOutcome(BaseModel):
    """Outcome of running one prompt through the external tool."""

    success: bool
    output: str = ""
    error: Optional[str] = None
    timeout: bool = False
    quota_exhausted: bool = False
    transient_fault: bool = False
    credential_index: Optional[int] = None
    attempts: int = 1
    duration_seconds: float = 0.0


class ReviewRecord(BaseModel):
    """A task that missed its deadline and needs manual attention."""

    job_id: str
    index: int
    prompt: str
    project_directory: Optional[str] = None
    webhook_url: Optional[str] = None
    reason: str
    recorded_at: str = Field(default_factory=utc_now)

    @property
    def key(self) -> tuple:
        return (self.job_id, self.index)


class BatchRequest(BaseModel):
    """
    A batch submission as received at the boundary.

    Accepts camelCase keys as used by inbox files.
    """

    prompts: List[str] = Field(..., min_length=1)
    webhook_url: str = Field(..., alias="webhookUrl")
    webhook_secret: Optional[str] = Field(default=None, alias="webhookSecret")
    project_id: Optional[str] = Field(default=None, alias="projectId")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('prompts')
    @classmethod
    def validate_prompts(cls, v: List[str]) -> List[str]:
        """Every prompt must be a non-blank string."""
        for i, prompt in enumerate(v):
            if not prompt.strip():
                raise ValueError(f"Prompt at position {i} is empty")
        return v

    @field_validator('webhook_url')
    @classmethod
    def validate_webhook_url(cls, v: str) -> str:
        """Only absolute http(s) URLs are accepted."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid webhook URL: {v}")
        return v
