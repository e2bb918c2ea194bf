"""Tests for prompt_queue.review module."""

import pytest
import json
from unittest.mock import patch

from prompt_queue.review import ReviewRecorder


class TestReviewRecorder:
    """Tests for ReviewRecorder."""

    def test_load_missing_file(self, recorder):
        assert recorder.load() == []

    def test_record_writes_entry(self, recorder):
        written = recorder.record(
            job_id="job-1",
            prompt="refactor the parser",
            index=2,
            project_directory="/srv/app",
            webhook_url="https://hooks.example.com/x",
        )

        assert written is True
        data = json.loads(recorder.review_file.read_text())
        assert len(data) == 1
        assert data[0]["job_id"] == "job-1"
        assert data[0]["index"] == 2
        assert data[0]["prompt"] == "refactor the parser"
        assert data[0]["project_directory"] == "/srv/app"
        assert data[0]["reason"] == "Deadline exceeded"
        assert data[0]["recorded_at"]

    def test_record_is_idempotent(self, recorder):
        assert recorder.record(job_id="job-1", prompt="p", index=0) is True
        assert recorder.record(job_id="job-1", prompt="p", index=0, reason="again") is False

        records = recorder.load()
        assert len(records) == 1
        assert records[0].reason == "Deadline exceeded"

    def test_same_index_different_jobs(self, recorder):
        recorder.record(job_id="job-1", prompt="p", index=0)
        recorder.record(job_id="job-2", prompt="p", index=0)
        recorder.record(job_id="job-1", prompt="q", index=1)

        assert [r.key for r in recorder.load()] == [("job-1", 0), ("job-2", 0), ("job-1", 1)]

    def test_record_never_contains_secret_field(self, recorder):
        recorder.record(job_id="job-1", prompt="p", index=0)
        assert "secret" not in recorder.review_file.read_text()

    def test_invalid_entries_skipped(self, recorder):
        recorder.review_file.write_text(json.dumps([
            {"job_id": "job-1", "index": 0, "prompt": "p", "reason": "Deadline exceeded"},
            {"job_id": "job-2"},
        ]))

        records = recorder.load()
        assert [r.job_id for r in records] == ["job-1"]

    def test_malformed_file_ignored(self, recorder):
        recorder.review_file.write_text(json.dumps({"not": "a list"}))
        assert recorder.load() == []

    def test_write_failure_propagates(self, recorder):
        with patch("prompt_queue.review.AtomicFileWriter.write_json", side_effect=OSError("read-only")):
            with pytest.raises(OSError):
                recorder.record(job_id="job-1", prompt="p", index=0)

        assert recorder.load() == []

    def test_record_backs_up_partly_invalid_file(self, recorder):
        original = json.dumps([
            {"job_id": "job-1", "index": 0, "prompt": "p", "reason": "Deadline exceeded"},
            {"job_id": "job-2"},
        ])
        recorder.review_file.write_text(original)

        assert recorder.record(job_id="job-3", prompt="q", index=1) is True

        backups = list(recorder.review_file.parent.glob("review.json.*.bak"))
        assert len(backups) == 1
        assert backups[0].read_text() == original
        assert [r.key for r in recorder.load()] == [("job-1", 0), ("job-3", 1)]

    def test_record_backs_up_malformed_file(self, recorder):
        recorder.review_file.write_text("{not json")

        recorder.record(job_id="job-1", prompt="p", index=0)

        backups = list(recorder.review_file.parent.glob("review.json.*.bak"))
        assert [b.read_text() for b in backups] == ["{not json"]
        assert [r.job_id for r in recorder.load()] == ["job-1"]

    def test_clean_file_not_backed_up(self, recorder):
        recorder.record(job_id="job-1", prompt="p", index=0)
        recorder.record(job_id="job-2", prompt="p", index=0)

        assert list(recorder.review_file.parent.glob("*.bak")) == []
