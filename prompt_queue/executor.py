"""
Task executor using the external text-generation CLI.

Each prompt runs as one subprocess (default `gemini --yolo <prompt>`) under a
wall-clock deadline. Failures are classified and retried through a policy
table: quota errors rotate the credential pool, tool startup faults back off
linearly.
"""

import asyncio
import logging
import os
import shutil
import signal
import time
import traceback
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

from prompt_queue.classifier import (
    Classifier, FailureKind, RetryPolicy, DEFAULT_RETRY_POLICY, classify_failure
)
from prompt_queue.credentials import CredentialPool
from prompt_queue.models import ExecutionOutcome


DEFAULT_TOOL_COMMAND = ["gemini", "--yolo"]
DEFAULT_CREDENTIAL_ENV = "GEMINI_API_KEY"
DEFAULT_TASK_TIMEOUT = 600.0  # seconds
DEFAULT_KILL_GRACE = 5.0  # seconds between SIGTERM and SIGKILL

EMPTY_OUTPUT_PLACEHOLDER = "(no visible response)"


logger = logging.getLogger(__name__)


class CredentialUnavailableError(RuntimeError):
    """No credential is configured; nothing can be executed."""


class TaskExecutor:
    """
    Runs prompts through the CLI tool with deadline, rotation and retry.

    The executor never touches job state; it only returns outcomes.
    """

    def __init__(
        self,
        pool: CredentialPool,
        tool_command: Optional[List[str]] = None,
        model: Optional[str] = None,
        credential_env: str = DEFAULT_CREDENTIAL_ENV,
        default_timeout: float = DEFAULT_TASK_TIMEOUT,
        kill_grace: float = DEFAULT_KILL_GRACE,
        classifier: Classifier = classify_failure,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize executor.

        Args:
            pool: Credential pool shared with the queue manager
            tool_command: Command prefix; the prompt is appended as the last argument
            model: Optional model name passed as `--model`
            credential_env: Environment variable receiving the active credential
            default_timeout: Deadline used when run() gets none
            kill_grace: Seconds to wait after SIGTERM before SIGKILL
            classifier: Maps failure text to a FailureKind
            retry_policy: FailureKind -> RetryRule table
            sleep: Awaitable used for retry delays
        """
        self.pool = pool
        self.tool_command = list(tool_command or DEFAULT_TOOL_COMMAND)
        self.model = model.strip() if model and model.strip() else None
        self.credential_env = credential_env
        self.default_timeout = default_timeout
        self.kill_grace = kill_grace
        self.classifier = classifier
        self.retry_policy = retry_policy if retry_policy is not None else DEFAULT_RETRY_POLICY
        self._sleep = sleep

    def build_args(self, prompt: str) -> List[str]:
        """Argument vector for one invocation; the prompt stays a single argument."""
        args = list(self.tool_command)
        if self.model:
            args += ["--model", self.model]
        args.append(prompt)
        return args

    async def run(
        self,
        prompt: str,
        working_directory: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> ExecutionOutcome:
        """
        Execute one prompt, retrying per the policy table.

        Args:
            prompt: Prompt text
            working_directory: cwd for the tool (project directory), if any
            deadline: Seconds allowed per invocation

        Returns:
            ExecutionOutcome of the last attempt

        Raises:
            CredentialUnavailableError: If the pool is empty
        """
        deadline = deadline if deadline is not None else self.default_timeout
        attempts = 0
        quota_hits = 0
        tool_retries = 0

        while True:
            credential = self.pool.current()
            if credential is None:
                raise CredentialUnavailableError(
                    f"No credential configured; set {self.credential_env} or GEMINI_API_KEYS"
                )

            attempts += 1
            outcome, diagnostics = await self._invoke(
                prompt, working_directory, deadline, credential
            )
            outcome.attempts = attempts

            if outcome.success or outcome.timeout:
                return outcome

            verdict = self.classifier(diagnostics)
            rule = self.retry_policy.get(verdict.kind)
            if rule is None:
                return outcome

            if rule.rotate_credential:
                quota_hits += 1
                outcome.quota_exhausted = True
                if self.pool.size() > 1 and quota_hits < self.pool.size():
                    logger.warning(
                        f"Quota signal '{verdict.matched_pattern}' on credential "
                        f"{self.pool.current_index() + 1}/{self.pool.size()}, rotating"
                    )
                    self.pool.rotate()
                    await self._sleep(rule.delay_for(quota_hits))
                    continue

                logger.error(
                    f"Quota exhausted after {quota_hits} credential(s) "
                    f"(pool size {self.pool.size()})"
                )
                return outcome

            if verdict.kind == FailureKind.TRANSIENT_TOOL:
                outcome.transient_fault = True

            if tool_retries < rule.max_retries:
                tool_retries += 1
                delay = rule.delay_for(tool_retries)
                logger.warning(
                    f"Transient tool fault '{verdict.matched_pattern}', "
                    f"retry {tool_retries}/{rule.max_retries} in {delay:.0f}s"
                )
                await self._sleep(delay)
                continue

            return outcome

    async def _invoke(
        self,
        prompt: str,
        working_directory: Optional[str],
        deadline: float,
        credential: str,
    ) -> Tuple[ExecutionOutcome, str]:
        """
        Run the tool once.

        Returns:
            (outcome, diagnostics) where diagnostics is the text to classify
        """
        credential_index = self.pool.current_index()
        env = os.environ.copy()
        env[self.credential_env] = credential

        cwd = None
        if working_directory:
            cwd = str(Path(working_directory))
            logger.info(f"Running in directory: {cwd}")

        logger.info(f"Executing prompt: {prompt[:50]}...")
        start = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_args(prompt),
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Could not start {self.tool_command[0]}: {error}")
            return ExecutionOutcome(
                success=False,
                error=error,
                credential_index=credential_index,
                duration_seconds=time.monotonic() - start,
            ), f"{error}\n{traceback.format_exc()}"

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=deadline)
        except asyncio.TimeoutError:
            await self._terminate(process)
            duration = time.monotonic() - start
            logger.error(f"Prompt exceeded deadline of {deadline:.0f}s, process terminated")
            return ExecutionOutcome(
                success=False,
                timeout=True,
                error=f"Timed out after {deadline:.0f}s; process terminated",
                credential_index=credential_index,
                duration_seconds=duration,
            ), ""
        except asyncio.CancelledError:
            await self._terminate(process, grace=0)
            raise

        duration = time.monotonic() - start
        output = stdout.decode("utf-8", errors="replace").strip()
        error_output = stderr.decode("utf-8", errors="replace").strip()
        diagnostics = f"{error_output}\n{output}"

        if process.returncode != 0:
            error = error_output or f"{self.tool_command[0]} exited with status {process.returncode}"
            logger.error(f"Tool failed (exit {process.returncode}): {error[:200]}")
            return ExecutionOutcome(
                success=False,
                output=output,
                error=error,
                credential_index=credential_index,
                duration_seconds=duration,
            ), diagnostics

        if output or not error_output:
            return ExecutionOutcome(
                success=True,
                output=output or EMPTY_OUTPUT_PLACEHOLDER,
                error=error_output or None,
                credential_index=credential_index,
                duration_seconds=duration,
            ), diagnostics

        logger.error(f"Tool produced only error output: {error_output[:200]}")
        return ExecutionOutcome(
            success=False,
            output=output,
            error=error_output,
            credential_index=credential_index,
            duration_seconds=duration,
        ), diagnostics

    async def _terminate(self, process: asyncio.subprocess.Process, grace: Optional[float] = None) -> None:
        """SIGTERM the process, then SIGKILL it if it outlives the grace period."""
        grace = self.kill_grace if grace is None else grace

        if process.returncode is None:
            try:
                process.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                return

            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
                return
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} ignored SIGTERM, killing")

        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()


def verify_tool_setup(
    pool: CredentialPool,
    tool_command: Optional[List[str]] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Check that executions can start at all.

    Returns:
        (available, problem description or None)
    """
    command = tool_command or DEFAULT_TOOL_COMMAND

    if pool.size() == 0:
        return False, "No credential configured (GEMINI_API_KEYS / GEMINI_API_KEY)"

    if shutil.which(command[0]) is None:
        return False, f"'{command[0]}' not found on PATH"

    return True, None
