"""
Structured error types for meridian.

Provides a small hierarchy of typed errors with metadata for retry
decisions, categorization, and root cause analysis through error chaining.

Instead of generic exceptions that lose context, MeridianError and its
subclasses carry:
- **Category:** What kind of error (network, validation, config, etc.)
- **Retryable:** Whether the operation can be retried automatically
- **Retry-after:** How long to wait before retrying
- **Context:** Structured metadata (app id, peer id, task id, custom fields)
- **Cause:** Chained underlying exception

Manifesto:
    - **Typed Error Hierarchy:** Callers catch the failure they can handle
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry metadata for structured logging
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      MeridianError                               │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError       ValidationError        ConfigError         │
        │  (retryable=True)     (VALIDATION)           (CONFIG)            │
        │       │                    │                      │              │
        │  ConnectError         ScheduleContractError  InvalidAppIdError   │
        │                       QueryError                                 │
        │                                                                  │
        │  OrchestrationError   StorageError                               │
        │  (ORCHESTRATION)      (STORAGE)                                  │
        │       │                    │                                     │
        │  ServiceUnavailableError  SnapshotError                          │
        │  RemoteCallError                                                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ConnectError("peer refused connection", retry_after=1)
    >>> error.retryable
    True

    >>> error = ScheduleContractError("'handler' must be provided")
    >>> error.with_context(task_id="abc").context.task_id
    'abc'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    meridian, observability

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories are grouped by their typical retry behavior:
    - **Infrastructure (usually transient):** NETWORK, STORAGE
    - **Caller errors (never retryable):** VALIDATION, CONFIG
    - **Cluster coordination:** ORCHESTRATION
    - **Internal errors:** INTERNAL, UNKNOWN
    """

    NETWORK = "NETWORK"              # Connection refused, peer offline
    STORAGE = "STORAGE"              # Snapshot file errors

    VALIDATION = "VALIDATION"        # Bad task options, bad filters
    CONFIG = "CONFIG"                # Unknown peer ids, invalid settings

    ORCHESTRATION = "ORCHESTRATION"  # Routing, remote calls, scheduler state

    INTERNAL = "INTERNAL"            # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"              # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover the identifiers that matter in a cluster scheduler
    (the local app id, the remote peer, the task, the service role). Anything
    else goes into ``metadata``. ``to_dict()`` serializes all non-None fields
    for logging.

    Attributes:
        app_id: Id of the process raising the error
        peer_id: Id of the remote peer involved
        task_id: Schedule task identifier
        service: RPC role name (e.g. ``"schedule"``)
        method: Remote method name
        metadata: Additional key-value pairs
    """

    app_id: str | None = None
    peer_id: str | None = None
    task_id: str | None = None
    service: str | None = None
    method: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["app_id", "peer_id", "task_id", "service", "method"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MeridianError(Exception):
    """
    Base exception for all meridian errors.

    Subclasses set ``default_category`` and ``default_retryable`` class
    attributes to provide sensible defaults for their domain.

    Guardrails:
        ❌ DON'T: Raise bare ``Exception`` from library code
        ✅ DO: Use the MeridianError subclass matching the failure

        ❌ DON'T: Swallow the original exception
        ✅ DO: Pass it as ``cause=`` for error chaining
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

    def with_context(self, **kwargs: Any) -> MeridianError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConnectError("Failed").with_context(peer_id="schedule-1")
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
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(MeridianError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ConnectError(TransientError):
    """Opening a connection to a remote peer failed."""

    default_category = ErrorCategory.NETWORK


# =============================================================================
# VALIDATION ERRORS (Never Retryable)
# =============================================================================


class ValidationError(MeridianError):
    """Caller supplied invalid input."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ScheduleContractError(ValidationError, TypeError):
    """
    Task creation contract violation.

    Raised synchronously by ``Schedule.create`` when the identifying tuple is
    too short, a string handler has no module, or no handler is given at all.
    Fix the call and resubmit; never retried.
    """

    pass


class QueryError(ValidationError, ValueError):
    """Malformed query-predicate document."""

    pass


# =============================================================================
# CONFIG ERRORS (Never Retryable)
# =============================================================================


class ConfigError(MeridianError):
    """Configuration error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidAppIdError(ConfigError):
    """An app id that does not appear in the RPC topology."""

    def __init__(self, app_id: str, message: str | None = None):
        super().__init__(message or f"The app ID '{app_id}' is invalid")
        self.app_id = app_id
        self.context.app_id = app_id


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(MeridianError):
    """Cluster coordination error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class ServiceUnavailableError(OrchestrationError):
    """No connected provider (and no local fallback) for an RPC role."""

    default_retryable = True

    def __init__(self, service: str, message: str | None = None):
        super().__init__(message or f"No provider available for service '{service}'")
        self.service = service
        self.context.service = service


class RemoteCallError(OrchestrationError):
    """A remote method raised; carries the remote error type and message."""

    def __init__(
        self,
        message: str,
        *,
        remote_type: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.remote_type = remote_type


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(MeridianError):
    """Storage-related error (disk, permissions)."""

    default_category = ErrorCategory.STORAGE
    default_retryable = False


class SnapshotError(StorageError):
    """Reading or writing the task snapshot failed."""

    pass


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, MeridianError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    if isinstance(error, (KeyError, AttributeError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MeridianError",
    "TransientError",
    "ConnectError",
    "ValidationError",
    "ScheduleContractError",
    "QueryError",
    "ConfigError",
    "InvalidAppIdError",
    "OrchestrationError",
    "ServiceUnavailableError",
    "RemoteCallError",
    "StorageError",
    "SnapshotError",
    "categorize_error",
]
