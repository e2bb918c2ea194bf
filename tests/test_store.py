"""Tests for prompt_queue.store module."""

import pytest
import json
from datetime import datetime, timedelta, timezone

from prompt_queue.models import Job, JobStatus, TaskResult, TaskResultStatus
from prompt_queue.store import JobStore


def hours_ago(hours: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()


def make_job(job_id: str, status=JobStatus.PENDING, created_at=None, results=0) -> Job:
    job = Job(
        job_id=job_id,
        prompts=["p0", "p1", "p2"],
        webhook_url="https://hooks.example.com/x",
        webhook_secret="secret-value",
    )
    for i in range(results):
        job.record_result(TaskResult(prompt=job.prompts[i], index=i, status=TaskResultStatus.COMPLETED))
    job.status = status
    if created_at:
        job.created_at = created_at
    return job


class TestJobStore:
    """Tests for JobStore."""

    def test_load_missing_file(self, job_store):
        assert job_store.load() == {}

    def test_save_and_read(self, job_store):
        job_store.save([make_job("a"), make_job("b", results=1)])

        jobs = job_store.read()

        assert list(jobs) == ["a", "b"]
        assert jobs["b"].next_index == 1
        assert jobs["b"].completed == 1

    def test_file_format(self, job_store):
        job_store.save([make_job("a")])

        data = json.loads(job_store.state_file.read_text())

        assert data["version"] == "1.0"
        assert data["updated_at"]
        assert data["jobs"]["a"]["prompts"] == ["p0", "p1", "p2"]

    def test_secret_persisted(self, job_store):
        job_store.save([make_job("a")])

        restored = job_store.load()["a"]
        assert restored.webhook_secret.get_secret_value() == "secret-value"

    def test_processing_job_reset_to_pending(self, job_store):
        job = make_job("a", status=JobStatus.PROCESSING, results=2)
        job.started_at = hours_ago(0.1)
        job_store.save([job])

        restored = job_store.load()["a"]

        assert restored.status == JobStatus.PENDING
        assert restored.started_at is None
        assert len(restored.results) == 2
        assert restored.next_index == 2

    def test_read_keeps_stored_status(self, job_store):
        job_store.save([make_job("a", status=JobStatus.PROCESSING)])
        assert job_store.read()["a"].status == "processing"

    def test_expired_completed_job_dropped_on_load(self, job_store, state_dir):
        old = make_job("old", status=JobStatus.COMPLETED, created_at=hours_ago(25), results=3)
        recent = make_job("recent", status=JobStatus.COMPLETED, created_at=hours_ago(23), results=3)
        # Bypass save() so the expired record actually reaches the file
        job_store.state_file.write_text(json.dumps({
            "version": "1.0",
            "jobs": {"old": old.to_record(), "recent": recent.to_record()},
        }))

        jobs = job_store.load()

        assert list(jobs) == ["recent"]

    def test_old_pending_job_kept(self, job_store):
        job_store.save([make_job("a", created_at=hours_ago(48))])
        assert "a" in job_store.load()

    def test_save_omits_expired(self, job_store):
        job_store.save([
            make_job("old", status=JobStatus.COMPLETED, created_at=hours_ago(30)),
            make_job("new"),
        ])

        data = json.loads(job_store.state_file.read_text())
        assert list(data["jobs"]) == ["new"]

    def test_custom_retention(self, state_dir):
        store = JobStore(state_dir / "jobs.json", retention_hours=1)
        job = make_job("a", status=JobStatus.COMPLETED, created_at=hours_ago(2))

        assert store.is_expired(job) is True

    def test_invalid_record_skipped(self, job_store):
        valid = make_job("good").to_record()
        job_store.state_file.write_text(json.dumps({
            "version": "1.0",
            "jobs": {"bad": {"job_id": "bad", "prompts": []}, "good": valid},
        }))

        assert list(job_store.load()) == ["good"]

    @pytest.mark.parametrize("content", ["[]", '{"jobs": []}', "{corrupt"])
    def test_unrecognized_file(self, job_store, content):
        job_store.state_file.write_text(content)
        assert job_store.load() == {}

    def test_save_to_unwritable_location_raises(self, temp_dir):
        blocker = temp_dir / "blocker"
        blocker.write_text("")
        store = JobStore(blocker / "jobs.json")

        with pytest.raises(OSError):
            store.save([make_job("a")])
