"""
Structured error types for the billing worker.

Every failure the worker can observe is mapped onto a small typed hierarchy
so that callers can decide, without string matching, whether an operation
should be retried, recorded as permanent, or surfaced to an operator.

Manifesto:
    - **Typed Error Hierarchy:** Gateway, data, lock and sync failures differ
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry account, gateway and job metadata
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       WorkerError                               │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  TransientGatewayError   PermanentFailure    LockBusyError      │
        │  (retryable=True)        (retryable=False)   (LOCK)             │
        │       │                       │                                 │
        │  GatewayTimeoutError      DataError                             │
        │  RateLimitedError                                               │
        │                                                                 │
        │  ConfigError             SyncError           JobError           │
        │  (CONFIG)                (SYNC)              (JOB)              │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - Adapter-level transient errors become Retry Queue entries.
    - ``DataError`` is recorded as a permanent failure, never retried.
    - Errors escaping a job body fail the JobRun; the lock is still released.

Examples:
    >>> error = TransientGatewayError("SMS gateway returned 503", retry_after=300)
    >>> error.retryable
    True
    >>> DataError("missing contact number").with_context(account_no="A-1").to_dict()["context"]
    {'account_no': 'A-1'}

Tags:
    error-handling, exception-hierarchy, retry-logic, billing-worker

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    GATEWAY = "GATEWAY"        # SMS, email, payment, RADIUS endpoints
    NETWORK = "NETWORK"        # Timeouts, DNS, connection resets
    DATA = "DATA"              # Malformed payloads, missing fields
    LOCK = "LOCK"              # Distributed lock contention
    SYNC = "SYNC"              # Remote state fetch failures
    CONFIG = "CONFIG"          # Missing or invalid settings
    JOB = "JOB"                # Job body failures
    INTERNAL = "INTERNAL"      # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    job: str | None = None
    run_id: str | None = None
    gateway: str | None = None
    item_id: str | None = None
    account_no: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job", "run_id", "gateway", "item_id", "account_no", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class WorkerError(Exception):
    """Base exception for all billing worker errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites rarely need to pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> WorkerError:
        """Add context to this error (fluent API).

        Usage:
            raise DataError("no recipient").with_context(gateway="sms", item_id=item.id)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# GATEWAY ERRORS
# =============================================================================


class TransientGatewayError(WorkerError):
    """Gateway failure that is expected to clear on a later attempt.

    Timeouts, connection errors, HTTP 5xx and throttling responses.
    """

    default_category = ErrorCategory.GATEWAY
    default_retryable = True


class GatewayTimeoutError(TransientGatewayError):
    """Client-side timeout elapsed before the gateway answered."""

    default_category = ErrorCategory.NETWORK


class RateLimitedError(TransientGatewayError):
    """Gateway asked us to slow down (HTTP 429)."""

    def __init__(self, message: str = "Rate limited by gateway", *, retry_after: int | None = None, **kwargs: Any):
        super().__init__(message, retry_after=retry_after, **kwargs)


class PermanentFailure(WorkerError):
    """Gateway rejected the request in a way retries cannot fix."""

    default_category = ErrorCategory.GATEWAY
    default_retryable = False


class DataError(PermanentFailure):
    """Malformed payload, missing required field, or rejected input."""

    default_category = ErrorCategory.DATA


# =============================================================================
# COORDINATION ERRORS
# =============================================================================


class LockBusyError(WorkerError):
    """A live lock with the requested name is held by someone else."""

    default_category = ErrorCategory.LOCK
    default_retryable = True

    def __init__(self, name: str, message: str | None = None):
        super().__init__(message or f"Lock is busy: {name}")
        self.lock_name = name


class SyncError(WorkerError):
    """Remote state could not be fetched for a whole sync cycle."""

    default_category = ErrorCategory.SYNC
    default_retryable = True


class JobError(WorkerError):
    """A job body failed or a job could not be dispatched."""

    default_category = ErrorCategory.JOB


class JobNotFoundError(JobError):
    """No job is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"Job not found: {name}")
        self.job_name = name


class ConfigError(WorkerError):
    """Configuration errors (missing credentials, invalid values)."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Whether an arbitrary exception should be treated as transient.

    Exceptions outside the hierarchy count as transient.
    """
    if isinstance(error, WorkerError):
        return error.retryable
    return True


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "WorkerError",
    "TransientGatewayError",
    "GatewayTimeoutError",
    "RateLimitedError",
    "PermanentFailure",
    "DataError",
    "LockBusyError",
    "SyncError",
    "JobError",
    "JobNotFoundError",
    "ConfigError",
    "is_retryable",
]
