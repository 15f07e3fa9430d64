"""Prometheus metrics for the progression engine"""

from progression.observability.metrics import (
    record_dispatch,
    record_event_submitted,
    record_milestone,
    record_notification,
    record_retry,
    record_unlock,
)

__all__ = [
    "record_dispatch",
    "record_event_submitted",
    "record_milestone",
    "record_notification",
    "record_retry",
    "record_unlock",
]
