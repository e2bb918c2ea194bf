"""
Configuration management for prompt-queue.

Settings come from the process environment, optionally seeded from a .env
file. Everything the daemon needs is resolved once into a Settings model.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from prompt_queue.executor import (
    DEFAULT_TOOL_COMMAND, DEFAULT_CREDENTIAL_ENV, DEFAULT_TASK_TIMEOUT, DEFAULT_KILL_GRACE
)
from prompt_queue.manager import DEFAULT_FLUSH_INTERVAL
from prompt_queue.notifier import DEFAULT_TIMEOUT_SECONDS
from prompt_queue.store import DEFAULT_RETENTION_HOURS


# Default locations
DEFAULT_STATE_DIR = Path.home() / ".config" / "prompt-queue"
DEFAULT_ENV_FILE = Path.cwd() / ".env"

JOBS_FILE_NAME = "jobs.json"
REVIEW_FILE_NAME = "review.json"
LOCK_FILE_NAME = "prompt-queue.lock"


# Environment variable -> Settings field
ENV_VARS: Dict[str, str] = {
    "GEMINI_MODEL": "model",
    "PROMPT_QUEUE_TOOL_COMMAND": "tool_command",
    "PROMPT_QUEUE_CREDENTIAL_ENV": "credential_env",
    "PROMPT_QUEUE_STATE_DIR": "state_dir",
    "PROMPT_QUEUE_INBOX_DIR": "inbox_dir",
    "PROMPT_QUEUE_PROJECTS_FILE": "projects_file",
    "PROMPT_QUEUE_TASK_TIMEOUT": "task_timeout",
    "PROMPT_QUEUE_KILL_GRACE": "kill_grace",
    "PROMPT_QUEUE_FLUSH_INTERVAL": "flush_interval",
    "PROMPT_QUEUE_RETENTION_HOURS": "retention_hours",
    "PROMPT_QUEUE_WEBHOOK_TIMEOUT": "webhook_timeout",
    "PROMPT_QUEUE_WATCH_DEBOUNCE_MS": "watch_debounce_ms",
    "PROMPT_QUEUE_LOG_LEVEL": "log_level",
}


class Settings(BaseModel):
    """Resolved daemon settings."""

    # Credentials and tool
    credentials: List[str] = Field(default_factory=list, repr=False, description="API keys in rotation order")
    model: Optional[str] = Field(default=None, description="Model passed to the tool as --model")
    tool_command: List[str] = Field(default_factory=lambda: list(DEFAULT_TOOL_COMMAND))
    credential_env: str = Field(default=DEFAULT_CREDENTIAL_ENV, description="Env var receiving the active key")

    # Locations
    state_dir: Path = Field(default=DEFAULT_STATE_DIR)
    inbox_dir: Optional[Path] = Field(default=None, description="Batch inbox; defaults to <state_dir>/inbox")
    projects_file: Optional[Path] = Field(default=None, description="Project registry JSON file")

    # Timing
    task_timeout: float = Field(default=DEFAULT_TASK_TIMEOUT, gt=0, description="Deadline per prompt (seconds)")
    kill_grace: float = Field(default=DEFAULT_KILL_GRACE, ge=0)
    flush_interval: float = Field(default=DEFAULT_FLUSH_INTERVAL, gt=0)
    retention_hours: float = Field(default=DEFAULT_RETENTION_HOURS, gt=0)
    webhook_timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    watch_debounce_ms: int = Field(default=500, ge=0)

    log_level: str = Field(default="INFO")

    @field_validator('tool_command', mode='before')
    @classmethod
    def split_tool_command(cls, v):
        """Accept a shell-style command string."""
        if isinstance(v, str):
            v = shlex.split(v)
        if not v:
            raise ValueError("Tool command is empty")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def jobs_file(self) -> Path:
        return self.state_dir / JOBS_FILE_NAME

    @property
    def review_file(self) -> Path:
        return self.state_dir / REVIEW_FILE_NAME

    @property
    def lock_file(self) -> Path:
        return self.state_dir / LOCK_FILE_NAME

    @property
    def resolved_inbox_dir(self) -> Path:
        return self.inbox_dir or self.state_dir / "inbox"


def parse_credentials(environ: Mapping[str, str]) -> List[str]:
    """
    Credential list from the environment.

    GEMINI_API_KEYS (comma-separated) wins; GEMINI_API_KEY is the
    single-key fallback.
    """
    raw = environ.get("GEMINI_API_KEYS") or environ.get("GEMINI_API_KEY") or ""
    return [key.strip() for key in raw.split(",") if key.strip()]


def load_settings(
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: .env file loaded into os.environ first (existing variables win)
        environ: Mapping to read instead of os.environ

    Raises:
        pydantic.ValidationError: If a value is invalid
    """
    if environ is None:
        env_path = Path(env_file) if env_file else DEFAULT_ENV_FILE
        if env_path.exists():
            load_dotenv(env_path)
        environ = os.environ

    values = {
        field: environ[var]
        for var, field in ENV_VARS.items()
        if environ.get(var)
    }
    values["credentials"] = parse_credentials(environ)

    return Settings(**values)
