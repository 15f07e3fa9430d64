"""Retry logic for store and notification calls

Transient failures (lock contention, dropped connections, webhook 5xx) are
retried with exponential backoff and jitter; everything else propagates.
"""

from progression.resilience.retry import retry_with_backoff, with_retry, is_retryable_error

__all__ = [
    "retry_with_backoff",
    "with_retry",
    "is_retryable_error",
]
