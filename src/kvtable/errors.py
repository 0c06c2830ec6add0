"""
Structured error types for kvtable.

Provides a small hierarchy of typed errors with metadata for retry
decisions, categorization and error chaining.

Only unexpected conditions are exceptions here. A missing key, a failed
``replace`` and a short delete count are ordinary outcomes and are reported
through return values by :class:`~kvtable.table.HashTable`.

Manifesto:
    - **Typed Error Hierarchy:** Configuration, backend and lock errors differ
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry the key, prefix and operation involved
    - **Error Chaining:** The client library's exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                      KVTableError                         │
        │  (category, retryable, retry_after, context, cause)       │
        ├──────────────────────────────────────────────────────────┤
        │  ConfigError            TransientError       LockError    │
        │  (CONFIG)               (BACKEND)            (LOCK)       │
        │     │                       │                   │          │
        │  MissingConfigError    BackendUnavailableError  LockTimeout│
        │  InvalidConfigError                                        │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> err = BackendUnavailableError("MGET failed").with_context(operation="get")
    >>> err.retryable
    True
    >>> err.to_dict()["context"]
    {'operation': 'get'}

Tags:
    error-handling, exception-hierarchy, retry-logic, kvtable

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

    BACKEND = "BACKEND"      # Store unreachable, command failed
    CONFIG = "CONFIG"        # Missing or invalid construction parameters
    LOCK = "LOCK"            # Lock acquisition gave up
    INTERNAL = "INTERNAL"    # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        operation: Dispatcher operation (``get``, ``set``, ``lock``, ...)
        keys: Logical keys involved
        prefix: Key prefix in effect
        backend: Backend class name
        metadata: Additional key-value pairs
    """

    operation: str | None = None
    keys: list[str] | None = None
    prefix: str | None = None
    backend: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation", "keys", "prefix", "backend"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class KVTableError(Exception):
    """
    Base exception for all kvtable errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain.

    Examples:
        >>> error = KVTableError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
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

    def with_context(self, **kwargs: Any) -> KVTableError:
        """
        Add context to this error (fluent API).

        Usage:
            raise BackendUnavailableError("MGET failed").with_context(
                operation="get", keys=["user:1"]
            )
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
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(KVTableError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# BACKEND ERRORS
# =============================================================================


class TransientError(KVTableError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.BACKEND
    default_retryable = True


class BackendUnavailableError(TransientError):
    """
    The remote store could not be reached or refused a command.

    Raised by drivers in place of the client library's own exceptions, so
    callers never need to import the client library to handle failures.
    """


# =============================================================================
# LOCK ERRORS
# =============================================================================


class LockError(KVTableError):
    """Lock protocol error."""

    default_category = ErrorCategory.LOCK
    default_retryable = True


class LockTimeoutError(LockError):
    """Lock could not be acquired within the allotted time."""

    def __init__(self, key: str, timeout: float, message: str | None = None):
        self.key = key
        self.timeout = timeout
        super().__init__(
            message or f"Timed out after {timeout}s waiting for lock: {key}",
            retry_after=timeout,
        )


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "KVTableError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "TransientError",
    "BackendUnavailableError",
    "LockError",
    "LockTimeoutError",
]
