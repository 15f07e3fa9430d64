"""
Standardized exception hierarchy for the progression engine
Provides rich context, consistent logging, and caller-friendly error messages
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

import httpx
import psycopg
from psycopg import errors as pg_errors

logger = logging.getLogger(__name__)


class ProgressionError(Exception):
    """
    Base exception for all progression engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - Caller-facing messages
    - Structured context
    - Automatic logging

    Example:
        raise ProgressionError(
            message="Failed to apply reward",
            user_id="user-1",
            operation="dispatch_reward",
            context={"ledger_key": "achievement:first_post"}
        )
    """

    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (caller input)
# ==========================================

class ValidationError(ProgressionError):
    """
    Raised when an activity event or request fails validation.
    Never retried; surfaced to the caller.

    Example:
        raise ValidationError(
            message="timestamp is too far in the future",
            field="timestamp",
            value="2031-01-01T00:00:00Z"
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Storage Errors
# ==========================================

class StorageError(ProgressionError):
    """
    Progress store read/write failed. Transient by default: the
    read-modify-write is retried and nothing is committed on failure.
    """

    def __init__(self, message: str, transient: bool = True, **kwargs):
        self.transient = transient
        kwargs.setdefault(
            "user_message",
            "We couldn't save your progress right now. Please try again."
        )
        super().__init__(message=message, **kwargs)


class ConcurrentModificationError(StorageError):
    """Per-user lock could not be acquired in time (contention)"""

    log_level = logging.WARNING

    def __init__(self, message: str = "Concurrent modification detected", **kwargs):
        super().__init__(
            message=message,
            user_message="Your progress is being updated elsewhere. Please retry with the same event.",
            **kwargs
        )


class RecordNotFoundError(StorageError):
    """Requested record does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            transient=False,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# Reward Errors
# ==========================================

class RewardDispatchError(ProgressionError):
    """
    Reward could not be applied. The outbox row stays in place and is
    retried independently of the originating event.
    """

    def __init__(
        self,
        message: str,
        ledger_key: Optional[str] = None,
        **kwargs
    ):
        self.ledger_key = ledger_key
        super().__init__(
            message=message,
            user_message="Your reward is on its way.",
            context={"ledger_key": ledger_key},
            **kwargs
        )


class NotificationError(ProgressionError):
    """Outbound unlock notification could not be delivered"""

    log_level = logging.WARNING

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            user_message="We couldn't deliver a notification. It will be retried.",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(ProgressionError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


class CatalogError(ConfigurationError):
    """Achievement catalog is malformed (duplicate ids, bad requirement)"""

    def __init__(self, message: str, achievement_id: Optional[str] = None, **kwargs):
        self.achievement_id = achievement_id
        super().__init__(message=message, config_key="ACHIEVEMENT_CATALOG_PATH", **kwargs)


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> ProgressionError:
    """
    Wrap external exceptions (psycopg, httpx, asyncio) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate ProgressionError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="load_user", user_id="user-1")
    """
    # Lock contention
    if isinstance(error, (pg_errors.LockNotAvailable, pg_errors.SerializationFailure,
                          pg_errors.DeadlockDetected, asyncio.TimeoutError)):
        return ConcurrentModificationError(
            message=f"{operation} could not acquire the user lock: {error}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Database errors
    if isinstance(error, psycopg.OperationalError):
        return StorageError(
            message=f"Database connection failed: {error}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    if isinstance(error, psycopg.Error):
        return StorageError(
            message=f"Database query failed: {error}",
            transient=False,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # HTTP errors
    if isinstance(error, (httpx.TimeoutException, httpx.HTTPStatusError, httpx.TransportError)):
        return NotificationError(
            message=f"Notification delivery failed: {error}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    return ProgressionError(
        message=f"{operation} failed: {error}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
