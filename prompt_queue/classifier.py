"""
Failure classification and retry policy for the task executor.

The executor never inspects error text itself: it asks a classifier for a
FailureKind and looks the kind up in a retry policy table. Indicator lists
can change here without touching the retry loop.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple


class FailureKind(str, Enum):
    """Retry-relevant class of a failed invocation."""
    QUOTA = "quota"
    TRANSIENT_TOOL = "transient_tool"
    OTHER = "other"


QUOTA_PATTERNS: Tuple[str, ...] = (
    "quota",
    "rate limit",
    "ratelimit",
    "rate_limit",
    "429",
    "resource exhausted",
    "resource_exhausted",
    "too many requests",
    "exceeded",
)

# Startup faults of the CLI tool itself, unrelated to the prompt
TRANSIENT_TOOL_PATTERNS: Tuple[str, ...] = (
    "invalid regular expression",
    "cannot find module",
    "err_module_not_found",
    "err_require_esm",
    "err_package_path_not_exported",
)


@dataclass(frozen=True)
class FailureClassification:
    """Classifier verdict for one failed invocation."""

    kind: FailureKind
    matched_pattern: Optional[str] = None


def classify_failure(text: str) -> FailureClassification:
    """
    Classify failure text (output, error stream or traceback).

    Matching is case-insensitive; quota indicators win over tool faults.
    """
    haystack = (text or "").lower()

    pattern = _first_match(haystack, QUOTA_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureKind.QUOTA, pattern)

    pattern = _first_match(haystack, TRANSIENT_TOOL_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureKind.TRANSIENT_TOOL, pattern)

    return FailureClassification(FailureKind.OTHER)


def _first_match(haystack: str, patterns: Tuple[str, ...]) -> Optional[str]:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


@dataclass(frozen=True)
class RetryRule:
    """
    How to react to one FailureKind.

    Attributes:
        rotate_credential: Switch to the next pooled credential before retrying.
            Retries are then bounded by the pool size, not max_retries.
        max_retries: Extra attempts allowed for non-rotating rules
        base_delay: Seconds to wait before a retry
        linear_backoff: Multiply base_delay by the retry number
    """

    rotate_credential: bool = False
    max_retries: int = 0
    base_delay: float = 0.0
    linear_backoff: bool = False

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        if self.linear_backoff:
            return self.base_delay * retry_number
        return self.base_delay


Classifier = Callable[[str], FailureClassification]
RetryPolicy = Dict[FailureKind, RetryRule]


DEFAULT_RETRY_POLICY: RetryPolicy = {
    FailureKind.QUOTA: RetryRule(rotate_credential=True, base_delay=1.0),
    FailureKind.TRANSIENT_TOOL: RetryRule(max_retries=2, base_delay=2.0, linear_backoff=True),
}
