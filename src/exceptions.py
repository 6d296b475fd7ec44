"""
Standardized exception hierarchy for the progress engine
Provides rich context, consistent logging, stable reason codes and
user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

import httpx
import psycopg
from psycopg import errors as pg_errors

logger = logging.getLogger(__name__)


class CompanionError(Exception):
    """
    Base exception for all progress engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - Stable machine-readable reason code
    - Retryable flag (transient vs permanent failures)
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise CompanionError(
            message="Failed to save daily report",
            user_id="123456",
            operation="record_activity",
            context={"report_date": "2024-01-15"}
        )
    """

    reason_code: str = "internal_error"
    retryable: bool = False
    log_level: int = logging.ERROR

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
            "reason_code": self.reason_code,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,  # Avoid conflict with logging's 'context'
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
            "reason_code": self.reason_code,
            "retryable": self.retryable,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class ValidationError(CompanionError):
    """
    Raised when caller input fails validation

    Validation errors are rejected before anything is written, so nothing
    is ever partially applied.

    Example:
        raise ValidationError(
            message="Score must be a non-negative integer",
            field="score",
            value=-5,
            user_id="123456"
        )
    """

    reason_code = "validation_error"
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
            context={"field": field, "value": value, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


class MissingFieldError(ValidationError):
    """A required field was not supplied"""

    reason_code = "missing_field"

    def __init__(self, field: str, **kwargs):
        super().__init__(message=f"{field} is required", field=field, **kwargs)


class InvalidPointsError(ValidationError):
    """Point deltas must be non-negative integers"""

    reason_code = "invalid_points"

    def __init__(self, points: Any, **kwargs):
        super().__init__(
            message=f"points must be a non-negative integer, got {points!r}",
            field="points",
            value=points,
            **kwargs
        )


class InvalidDateError(ValidationError):
    """Date is not a valid YYYY-MM-DD calendar date"""

    reason_code = "invalid_date"

    def __init__(self, value: Any, **kwargs):
        super().__init__(
            message="Invalid date format. Use YYYY-MM-DD",
            field="date",
            value=value,
            **kwargs
        )


class InvalidActivityError(ValidationError):
    """Unknown activity type or a payload that does not match it"""

    reason_code = "invalid_activity"

    def __init__(self, message: str, activity_type: Optional[str] = None, **kwargs):
        self.activity_type = activity_type
        super().__init__(message=message, field="activity_data", value=activity_type, **kwargs)


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(CompanionError):
    """
    Base class for database-related errors
    """
    reason_code = "database_error"


class ConnectionError(DatabaseError):
    """Database connection failed"""

    reason_code = "database_unavailable"
    retryable = True

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your progress. Please try again.",
            context={"query": query, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested database record does not exist (or belongs to another user)"""

    reason_code = "not_found"
    log_level = logging.WARNING

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
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


class ConcurrentUpdateError(DatabaseError):
    """
    A shared row (user progress, game stat, daily report) was changed by a
    concurrent request. Retried internally; surfaced as "try again" once
    the retries are exhausted.
    """

    reason_code = "concurrent_update"
    retryable = True
    log_level = logging.WARNING

    def __init__(self, message: str = "Concurrent update conflict", **kwargs):
        super().__init__(
            message=message,
            user_message="Your progress is being updated by another request. Please try again.",
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(CompanionError):
    """
    Base class for external API failures
    """

    reason_code = "external_api_error"
    retryable = True

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(
            message=message,
            context={"service": service, "status_code": status_code, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


class ResponseProviderError(ExternalAPIError):
    """Generative response provider failed or returned an unusable reply"""

    reason_code = "provider_unavailable"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            service="Gemini",
            **kwargs
        )


# ==========================================
# Authentication
# ==========================================

class AuthenticationError(CompanionError):
    """Authentication failed"""

    reason_code = "unauthenticated"
    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="Authentication failed. Please check your credentials.",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(CompanionError):
    """System configuration is invalid or missing"""

    reason_code = "misconfigured"

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
            context={"config_key": config_key, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


# ==========================================
# Derived Computation Errors
# ==========================================

class InsightGenerationError(CompanionError):
    """
    Insight rule evaluation or insight write failed.

    Best-effort: logged and skipped, never aborts the activity write that
    triggered it.
    """

    reason_code = "derived_computation_failed"

    def __init__(self, message: str, rule: Optional[str] = None, **kwargs):
        self.rule = rule
        super().__init__(
            message=message,
            context={"rule": rule, **(kwargs.pop("context", None) or {})},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

_CONFLICT_ERRORS = (
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    pg_errors.LockNotAvailable,
)


def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> CompanionError:
    """
    Wrap external exceptions (psycopg, httpx, etc.) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate CompanionError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="apply_points",
                user_id="123456",
                context={"game_kind": "memory_cards"}
            )
    """
    if isinstance(error, CompanionError):
        return error

    # Row-lock conflicts first: they are OperationalError subclasses
    if isinstance(error, _CONFLICT_ERRORS):
        return ConcurrentUpdateError(
            message=f"Concurrent update conflict: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # HTTP errors
    elif isinstance(error, httpx.TimeoutException):
        return ExternalAPIError(
            message=f"API request timed out: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, httpx.HTTPStatusError):
        return ExternalAPIError(
            message=f"API returned error: {error.response.status_code}",
            status_code=error.response.status_code,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    else:
        return CompanionError(
            message=f"{operation} failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
