"""Retry policy shared by outbound HTTP deliveries."""

from dataclasses import dataclass
from enum import Enum


class AttemptOutcome(str, Enum):
    """Classification of a single delivery attempt."""

    SUCCESS = "success"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"

    @property
    def is_retryable(self) -> bool:
        return self not in (AttemptOutcome.SUCCESS, AttemptOutcome.CLIENT_ERROR)


def classify_status(status_code: int) -> AttemptOutcome:
    """Map an HTTP status code to an attempt outcome.

    2xx is success and 4xx is terminal. Everything else (5xx, and the odd
    3xx from a misconfigured endpoint) is treated as a server-side problem
    worth retrying.
    """
    if 200 <= status_code < 300:
        return AttemptOutcome.SUCCESS
    if 400 <= status_code < 500:
        return AttemptOutcome.CLIENT_ERROR
    return AttemptOutcome.SERVER_ERROR


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with linear backoff.

    The delay after attempt ``n`` is ``base_delay_ms * n``: attempt 1 waits
    one base delay, attempt 2 waits two, and so on.
    """

    max_attempts: int = 3
    base_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must not be negative")

    def attempts(self) -> range:
        """Attempt numbers, starting at 1."""
        return range(1, self.max_attempts + 1)

    def has_attempts_left(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay_seconds(self, attempt: int) -> float:
        """Seconds to wait after a failed ``attempt`` before the next one."""
        return (self.base_delay_ms * attempt) / 1000

    def should_retry(self, outcome: AttemptOutcome, attempt: int) -> bool:
        return outcome.is_retryable and self.has_attempts_left(attempt)
