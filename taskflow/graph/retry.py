from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class RetryDecision:
    action: str
    reason: str
    delay_seconds: float = 0.0


class PersistenceRetryPolicy:
    """Bounded retry policy for record-store writes."""

    TRANSIENT_MARKERS = (
        "database is locked",
        "database table is locked",
        "timed out",
        "timeout",
        "temporary",
        "connection reset",
        "503",
        "rate limit",
    )

    def __init__(self, *, max_attempts: int = 3, backoff_seconds: float = 0.25) -> None:
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_seconds = max(0.0, float(backoff_seconds))

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def decide(self, *, error: Exception, attempt: int) -> RetryDecision:
        if attempt >= self._max_attempts:
            return RetryDecision(
                action="fail",
                reason=f"Gave up after {attempt}/{self._max_attempts} attempts.",
            )
        if not self._looks_transient(str(error).lower()):
            return RetryDecision(
                action="fail",
                reason="Error is not transient.",
            )
        return RetryDecision(
            action="retry",
            reason=f"Transient error detected, retry {attempt + 1}/{self._max_attempts}.",
            delay_seconds=self._backoff_seconds * attempt,
        )

    def _looks_transient(self, text: str) -> bool:
        return any(marker in text for marker in self.TRANSIENT_MARKERS)
