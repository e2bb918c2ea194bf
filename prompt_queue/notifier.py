"""
Webhook notifications for prompt and job completion.

Each event is POSTed once; non-2xx answers and transport errors are logged
and reported back, never retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from prompt_queue.models import Job, TaskResult, utc_now


DEFAULT_TIMEOUT_SECONDS = 10.0
USER_AGENT = "Prompt-Queue/1.0"
SECRET_HEADER = "X-Webhook-Secret"


logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Result of one webhook delivery attempt."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def prompt_completed_payload(job: Job, result: TaskResult) -> Dict[str, Any]:
    """Body of the `prompt.completed` event."""
    return {
        "event": "prompt.completed",
        "jobId": job.job_id,
        "prompt": result.prompt,
        "output": result.output,
        "status": "success" if result.succeeded else "failed",
        "error": result.error,
        "timestamp": utc_now(),
    }


def job_completed_payload(job: Job) -> Dict[str, Any]:
    """Body of the `job.completed` event."""
    return {
        "event": "job.completed",
        "jobId": job.job_id,
        "totalPrompts": job.total,
        "completed": job.completed,
        "failed": job.failed,
        "results": [r.model_dump(mode="json") for r in job.results],
        "timestamp": utc_now(),
    }


class WebhookNotifier:
    """Delivers queue events to the caller's webhook endpoint."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize notifier.

        Args:
            timeout_seconds: Per-request timeout
            client: Preconfigured client (tests pass one with a mock transport)
        """
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": USER_AGENT},
        )

    async def send(
        self,
        url: str,
        payload: Dict[str, Any],
        secret: Optional[str] = None,
    ) -> DeliveryResult:
        """POST one JSON payload."""
        headers = {"User-Agent": USER_AGENT}
        if secret:
            headers[SECRET_HEADER] = secret

        logger.info(f"Sending {payload.get('event')} webhook to {url}")

        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Webhook to {url} failed: {type(e).__name__}: {e}")
            return DeliveryResult(success=False, error=f"{type(e).__name__}: {e}")

        if response.is_success:
            logger.info(f"Webhook delivered ({response.status_code})")
            return DeliveryResult(success=True, status_code=response.status_code)

        logger.warning(f"Webhook to {url} answered HTTP {response.status_code}")
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    async def notify_prompt_completed(self, job: Job, result: TaskResult) -> DeliveryResult:
        return await self.send(
            job.webhook_url,
            prompt_completed_payload(job, result),
            _secret_value(job),
        )

    async def notify_job_completed(self, job: Job) -> DeliveryResult:
        return await self.send(
            job.webhook_url,
            job_completed_payload(job),
            _secret_value(job),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _secret_value(job: Job) -> Optional[str]:
    return job.webhook_secret.get_secret_value() if job.webhook_secret else None
