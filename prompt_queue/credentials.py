"""
Credential rotation pool.

Holds the interchangeable API keys handed to the external tool and the
cursor selecting the active one. The cursor is process-local: a restart
always begins with the first credential.
"""

import logging
from typing import Iterable, List, Optional


logger = logging.getLogger(__name__)


class CredentialPool:
    """
    Ordered set of credentials with a wrapping cursor.

    Only the queue worker rotates the pool, so no locking is needed.
    """

    def __init__(self, credentials: Iterable[str] = ()):
        """
        Initialize the pool.

        Args:
            credentials: Credential values in rotation order; blanks are dropped
        """
        self._credentials: List[str] = [c.strip() for c in credentials if c and c.strip()]
        self._index = 0

    @classmethod
    def from_config(cls, value: Optional[str]) -> "CredentialPool":
        """
        Build a pool from a comma-separated configuration value.

        A single value without commas is accepted for older configurations.
        """
        if not value:
            return cls()
        return cls(value.split(","))

    def current(self) -> Optional[str]:
        """Credential at the cursor, or None when the pool is empty."""
        if not self._credentials:
            return None
        return self._credentials[self._index]

    def rotate(self) -> bool:
        """
        Advance the cursor to the next credential.

        Returns:
            False when there is nothing to rotate to (zero or one entries)
        """
        if len(self._credentials) <= 1:
            return False

        previous = self._index
        self._index = (self._index + 1) % len(self._credentials)
        logger.info(f"Rotated credential {previous + 1} -> {self._index + 1} of {len(self._credentials)}")
        return True

    def size(self) -> int:
        return len(self._credentials)

    def current_index(self) -> int:
        return self._index

    def __repr__(self) -> str:
        return f"CredentialPool(size={self.size()}, index={self._index})"
