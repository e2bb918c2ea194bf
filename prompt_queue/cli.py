"""
Command-line interface for prompt-queue.

Commands:
- run:     start the daemon in the foreground
- submit:  drop a batch of prompts into the inbox
- jobs:    list known jobs (most recent first)
- job:     show one job with its results
- reviews: list prompts that timed out and need manual follow-up
"""

import argparse
import sys
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from prompt_queue.atomic import AtomicFileWriter
from prompt_queue.config import Settings, load_settings
from prompt_queue.models import BatchRequest, Job
from prompt_queue.review import ReviewRecorder
from prompt_queue.store import JobStore


STATUS_ICONS = {
    "pending": "⏳",
    "processing": "🔄",
    "completed": "✅",
    "failed": "❌",
    "timeout": "⏰",
}


def _short(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[:width - 3] + "..."


# =============================================================================
# RUN COMMAND
# =============================================================================

def cmd_run(args, settings: Settings) -> int:
    """Run the daemon in the foreground."""
    from prompt_queue.daemon import PromptQueueDaemon, configure_logging

    configure_logging(settings.log_level)
    PromptQueueDaemon(settings).start()
    return 0


# =============================================================================
# SUBMIT COMMAND
# =============================================================================

def cmd_submit(args, settings: Settings) -> int:
    """Write a batch file into the inbox for the daemon to pick up."""
    try:
        request = BatchRequest(
            prompts=args.prompts,
            webhook_url=args.webhook_url,
            webhook_secret=args.secret,
            project_id=args.project,
        )
    except ValidationError as e:
        print(f"❌ Invalid batch: {e}")
        return 1

    inbox_dir = settings.resolved_inbox_dir
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    batch_file = inbox_dir / f"batch-{stamp}-{uuid.uuid4().hex[:8]}.json"

    AtomicFileWriter.write_json(
        batch_file,
        request.model_dump(by_alias=True, exclude_none=True),
    )

    print(f"📥 Queued {len(request.prompts)} prompt(s): {batch_file}")
    return 0


# =============================================================================
# STATUS COMMANDS
# =============================================================================

def cmd_jobs(args, settings: Settings) -> int:
    """List jobs from the durable store."""
    jobs = list(JobStore(settings.jobs_file).read().values())

    if not jobs:
        print("No jobs.")
        return 0

    jobs = sorted(reversed(jobs), key=lambda j: j.created_at, reverse=True)
    if args.limit:
        jobs = jobs[:args.limit]

    for job in jobs:
        icon = STATUS_ICONS.get(job.status, "•")
        print(
            f"{icon} {job.job_id}  {job.status:<10}  "
            f"{job.completed}/{job.total} ok, {job.failed} failed  "
            f"created {job.created_at}"
        )
    return 0


def _print_job(job: Job) -> None:
    print(f"Job: {job.job_id}")
    print(f"Status: {job.status}")
    print(f"Prompts: {job.total} ({job.completed} completed, {job.failed} failed)")
    if job.project_id:
        print(f"Project: {job.project_id} ({job.project_directory or 'no directory'})")
    print(f"Webhook: {job.webhook_url}")
    print(f"Created: {job.created_at}")
    if job.started_at:
        print(f"Started: {job.started_at}")
    if job.completed_at:
        print(f"Completed: {job.completed_at}")

    if job.results:
        print("\nResults:")
    for result in job.results:
        icon = STATUS_ICONS.get(result.status, "•")
        print(f"  {icon} [{result.index + 1}] {_short(result.prompt)}  ({result.duration_seconds:.1f}s)")
        if result.error:
            print(f"      Error: {_short(result.error, 100)}")

    remaining = job.total - len(job.results)
    if remaining and job.status != "completed":
        print(f"\n{remaining} prompt(s) not yet run")


def cmd_job(args, settings: Settings) -> int:
    """Show one job."""
    job = JobStore(settings.jobs_file).read().get(args.job_id)
    if job is None:
        print(f"❌ Job not found: {args.job_id}")
        return 1

    _print_job(job)
    return 0


def cmd_reviews(args, settings: Settings) -> int:
    """List timed-out prompts awaiting manual follow-up."""
    records = ReviewRecorder(settings.review_file).load()

    if not records:
        print("No prompts awaiting review.")
        return 0

    for record in records:
        print(f"⏰ {record.job_id} [{record.index + 1}] {_short(record.prompt)}")
        print(f"    {record.reason} (recorded {record.recorded_at})")
        if record.project_directory:
            print(f"    Directory: {record.project_directory}")
    return 0


# =============================================================================
# MAIN
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prompt-queue",
        description="Sequential prompt execution queue with webhook notifications",
    )
    parser.add_argument("--env-file", type=Path, default=None, help="Path to .env file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the daemon in the foreground")

    submit = subparsers.add_parser("submit", help="Queue a batch of prompts")
    submit.add_argument("prompts", nargs="+", help="Prompts, executed in order")
    submit.add_argument("--webhook-url", required=True, help="URL receiving notifications")
    submit.add_argument("--secret", default=None, help="Sent as X-Webhook-Secret")
    submit.add_argument("--project", default=None, help="Project id to run in")

    jobs = subparsers.add_parser("jobs", help="List jobs")
    jobs.add_argument("--limit", type=int, default=0, help="Show at most N jobs")

    job = subparsers.add_parser("job", help="Show one job")
    job.add_argument("job_id")

    subparsers.add_parser("reviews", help="List timed-out prompts")

    return parser


COMMANDS = {
    "run": cmd_run,
    "submit": cmd_submit,
    "jobs": cmd_jobs,
    "job": cmd_job,
    "reviews": cmd_reviews,
}


def main(argv=None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ValidationError as e:
        print(f"❌ Invalid configuration: {e}")
        return 1

    return COMMANDS[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
