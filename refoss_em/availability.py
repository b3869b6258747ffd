"""Poll failure hysteresis for device availability."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any

from .const import POLL_MAX_CONSEC_FAILS


@dataclass
class AvailabilityTracker:
    """Track consecutive poll failures and the resulting availability flag.

    The device stays available until ``threshold`` consecutive failures have
    been recorded; a single success restores it.
    """

    threshold: int = POLL_MAX_CONSEC_FAILS
    available: bool = True
    consecutive_failures: int = 0
    last_success_at: float | None = None
    last_failure_at: float | None = None
    last_error: str | None = None
    _total_failures: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        """Reject thresholds that would never tolerate a failure."""

        if self.threshold < 1:
            msg = f"threshold must be at least 1, got {self.threshold}"
            raise ValueError(msg)

    def record_failure(
        self, error: BaseException | str | None = None, *, timestamp: float | None = None
    ) -> bool:
        """Count a failed poll and return True if availability changed."""

        self.consecutive_failures += 1
        self._total_failures += 1
        self.last_failure_at = timestamp or time.time()
        if error is not None:
            self.last_error = str(error) or type(error).__name__
        if self.available and self.consecutive_failures >= self.threshold:
            self.available = False
            return True
        return False

    def record_success(self, *, timestamp: float | None = None) -> bool:
        """Reset the failure counter and return True if availability changed."""

        self.consecutive_failures = 0
        self.last_success_at = timestamp or time.time()
        if not self.available:
            self.available = True
            return True
        return False

    @property
    def total_failures(self) -> int:
        """Return the number of failures seen since creation."""

        return self._total_failures

    def snapshot(self) -> dict[str, Any]:
        """Return a serializable snapshot of the tracker state."""

        return {
            "available": self.available,
            "threshold": self.threshold,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self._total_failures,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": self.last_error,
        }


__all__ = ["AvailabilityTracker"]
