"""Retry and backoff policy shared by the HTML and PDF fetch paths."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to try a request and how long to wait between tries.

    Args:
        max_attempts: Total attempts including the first one.
        backoff: FIXED waits ``base_delay_seconds`` every time; EXPONENTIAL
            waits ``base_delay_seconds * 2**attempt`` after failed attempt N.
        base_delay_seconds: Base sleep between attempts.
        retry_on_http_status: When False, a well-formed non-success response
            fails immediately instead of being retried.
    """

    max_attempts: int = 3
    backoff: BackoffKind = BackoffKind.FIXED
    base_delay_seconds: float = 1.0
    retry_on_http_status: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_seconds < 0:
            raise ValueError(f"base_delay_seconds must be >= 0, got {self.base_delay_seconds}")

    def delay_for(self, attempt: int) -> float:
        """Return the sleep that follows failed attempt number ``attempt`` (1-based)."""
        if self.backoff is BackoffKind.EXPONENTIAL:
            return self.base_delay_seconds * (2**attempt)
        return self.base_delay_seconds


HTML_RETRY_POLICY = RetryPolicy()
PDF_RETRY_POLICY = RetryPolicy(backoff=BackoffKind.EXPONENTIAL, retry_on_http_status=False)
