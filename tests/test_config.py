"""Tests for prompt_queue.config module."""

import pytest
import os
from pathlib import Path

from pydantic import ValidationError

from prompt_queue.config import ENV_VARS, Settings, load_settings, parse_credentials
from prompt_queue.executor import DEFAULT_TOOL_COMMAND


@pytest.fixture
def clean_environ(monkeypatch):
    """Replace os.environ with a copy free of prompt-queue variables."""
    environ = {
        k: v for k, v in os.environ.items()
        if k not in ENV_VARS and k not in ("GEMINI_API_KEYS", "GEMINI_API_KEY")
    }
    monkeypatch.setattr(os, "environ", environ)
    return environ


class TestParseCredentials:
    """Tests for parse_credentials()."""

    def test_multiple_keys(self):
        assert parse_credentials({"GEMINI_API_KEYS": "a, b ,,c"}) == ["a", "b", "c"]

    def test_single_key_fallback(self):
        assert parse_credentials({"GEMINI_API_KEY": "only"}) == ["only"]

    def test_keys_list_wins(self):
        env = {"GEMINI_API_KEYS": "a,b", "GEMINI_API_KEY": "legacy"}
        assert parse_credentials(env) == ["a", "b"]

    def test_none(self):
        assert parse_credentials({}) == []


class TestSettings:
    """Tests for Settings model."""

    def test_defaults(self, tmp_path):
        settings = Settings(state_dir=tmp_path)

        assert settings.tool_command == DEFAULT_TOOL_COMMAND
        assert settings.task_timeout == 600
        assert settings.retention_hours == 24
        assert settings.jobs_file == tmp_path / "jobs.json"
        assert settings.review_file == tmp_path / "review.json"
        assert settings.lock_file == tmp_path / "prompt-queue.lock"
        assert settings.resolved_inbox_dir == tmp_path / "inbox"

    def test_explicit_inbox(self, tmp_path):
        settings = Settings(state_dir=tmp_path, inbox_dir=tmp_path / "drop")
        assert settings.resolved_inbox_dir == tmp_path / "drop"

    def test_tool_command_string_is_split(self):
        settings = Settings(tool_command="npx @google/gemini-cli --yolo --sandbox 'a b'")
        assert settings.tool_command == ["npx", "@google/gemini-cli", "--yolo", "--sandbox", "a b"]

    def test_empty_tool_command_rejected(self):
        with pytest.raises(ValidationError):
            Settings(tool_command="   ")

    @pytest.mark.parametrize("field,value", [
        ("task_timeout", 0),
        ("kill_grace", -1),
        ("retention_hours", 0),
        ("log_level", "LOUD"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})

    def test_log_level_normalized(self):
        assert Settings(log_level=" debug ").log_level == "DEBUG"

    def test_credentials_hidden_from_repr(self):
        settings = Settings(credentials=["sk-secret"])
        assert "sk-secret" not in repr(settings)


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_from_mapping(self, tmp_path):
        settings = load_settings(environ={
            "GEMINI_API_KEYS": "k1,k2",
            "GEMINI_MODEL": "gemini-2.5-flash",
            "PROMPT_QUEUE_STATE_DIR": str(tmp_path),
            "PROMPT_QUEUE_TASK_TIMEOUT": "120",
            "PROMPT_QUEUE_WATCH_DEBOUNCE_MS": "0",
            "PROMPT_QUEUE_TOOL_COMMAND": "gemini --yolo --debug",
        })

        assert settings.credentials == ["k1", "k2"]
        assert settings.model == "gemini-2.5-flash"
        assert settings.state_dir == tmp_path
        assert settings.task_timeout == 120.0
        assert settings.watch_debounce_ms == 0
        assert settings.tool_command == ["gemini", "--yolo", "--debug"]

    def test_empty_values_use_defaults(self):
        settings = load_settings(environ={"PROMPT_QUEUE_TASK_TIMEOUT": ""})
        assert settings.task_timeout == 600.0

    def test_invalid_number(self):
        with pytest.raises(ValidationError):
            load_settings(environ={"PROMPT_QUEUE_TASK_TIMEOUT": "soon"})

    def test_env_file_loaded(self, tmp_path, clean_environ):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "GEMINI_API_KEYS=file-a,file-b\n"
            "PROMPT_QUEUE_RETENTION_HOURS=6\n"
        )

        settings = load_settings(env_file)

        assert settings.credentials == ["file-a", "file-b"]
        assert settings.retention_hours == 6.0

    def test_process_environment_wins_over_env_file(self, tmp_path, clean_environ):
        env_file = tmp_path / ".env"
        env_file.write_text("PROMPT_QUEUE_TASK_TIMEOUT=30\n")
        clean_environ["PROMPT_QUEUE_TASK_TIMEOUT"] = "90"

        assert load_settings(env_file).task_timeout == 90.0

    def test_missing_env_file_ignored(self, tmp_path, clean_environ):
        settings = load_settings(tmp_path / "missing.env")
        assert settings.credentials == []
