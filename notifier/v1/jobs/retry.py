"""
Retry/backoff policy applied when a delivery attempt fails.
"""

import random
from dataclasses import dataclass

from notifier.config.settings import Settings
from notifier.v1.jobs.schemas import JobEnvelope


@dataclass(frozen=True)
class RetryDecision:
    """What the broker should do with a failed attempt."""

    retry: bool
    delay_s: float
    attempt: int  # 1-based number of the attempt that failed
    max_attempts: int


class RetryController:
    """
    Uniform retry policy: every failure is retried while attempts remain.

    Failures are not classified as retryable or not; an unsupported job type
    exhausts its attempts like a provider outage would and then shows up as a
    permanent failure.
    """

    def __init__(
        self,
        base_delay_s: float,
        max_delay_s: float,
        jitter: float = 0.25,
        rng: random.Random | None = None,
    ):
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryController":
        return cls(
            base_delay_s=settings.job_backoff_base_s,
            max_delay_s=settings.job_max_backoff_s,
            jitter=settings.job_backoff_jitter,
        )

    def backoff_delay(self, attempt_count: int) -> float:
        """Calculate the delay before a retry with exponential backoff and jitter."""
        # Exponential backoff: base * 2^attempt
        delay = min(self.max_delay_s, self.base_delay_s * (2**attempt_count))

        if self.jitter:
            delay += delay * self.jitter * (2 * self._rng.random() - 1)

        return max(0.0, min(self.max_delay_s, delay))

    def decide(self, envelope: JobEnvelope) -> RetryDecision:
        failed_attempt = envelope.attempt_count + 1
        retry = failed_attempt < envelope.max_attempts

        return RetryDecision(
            retry=retry,
            delay_s=self.backoff_delay(envelope.attempt_count) if retry else 0.0,
            attempt=failed_attempt,
            max_attempts=envelope.max_attempts,
        )
