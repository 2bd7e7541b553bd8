"""
Retry policy: bounded attempts with a fixed backoff schedule.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from .models import SyncOperation, utcnow

DEFAULT_RETRY_DELAYS = (1.0, 2.0, 5.0, 10.0, 30.0)
DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule and attempt cap for failed remote applications.

    ``delay(n)`` reads the schedule at index ``n`` and clamps to its last value,
    so delays never decrease as attempts grow.
    """
    schedule: Sequence[float] = DEFAULT_RETRY_DELAYS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self):
        if not self.schedule:
            raise ValueError("Retry schedule must not be empty")
        if any(later < earlier for earlier, later in zip(self.schedule, self.schedule[1:])):
            raise ValueError("Retry schedule must be non-decreasing")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        object.__setattr__(self, "schedule", tuple(float(d) for d in self.schedule))

    def delay(self, attempts: int) -> float:
        """Backoff in seconds before the next try after ``attempts`` failures."""
        if attempts < 0:
            return self.schedule[0]
        if attempts >= len(self.schedule):
            return self.schedule[-1]
        return self.schedule[attempts]

    def register_failure(
        self,
        operation: SyncOperation,
        error: str,
        now: Optional[datetime] = None,
    ) -> SyncOperation:
        """Return a copy of the operation with the failure recorded."""
        return operation.copy(
            attempts=operation.attempts + 1,
            last_attempt=now or utcnow(),
            last_error=error,
        )

    def should_drop(self, operation: SyncOperation) -> bool:
        return operation.attempts >= self.max_attempts

    def remaining_attempts(self, operation: SyncOperation) -> int:
        return max(self.max_attempts - operation.attempts, 0)
