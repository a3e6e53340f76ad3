"""
Structured error types for remake.

Every failure the engine can produce maps onto one of five families, and
each family has a fixed policy for what the scheduler does with it. The
hierarchy below carries that policy as data (``category`` and
``retryable``) so callers never need to inspect message strings.

Manifesto:
    - **Configuration errors are fatal:** malformed plans, cycles, bad
      overrides and illegal option combinations abort before any build
    - **Analysis errors are not:** a command we cannot parse is tracked as
      having unknown dependencies and is always rebuilt
    - **Build and timeout errors are retryable:** they consume the target's
      retry budget and end up in the target's metadata
    - **Cache errors abort the run:** target state would be inconsistent

Architecture:
    ::

        RemakeError  (category, retryable, context, cause)
        ├── ConfigError            CONFIG    fatal, before building
        │   ├── PlanValidationError
        │   │   └── DuplicateTargetError
        │   ├── CycleDetectedError
        │   ├── InvalidOverrideError
        │   ├── IncompatibleOptionsError
        │   └── HashAlgorithmMismatchError
        ├── AnalysisError          ANALYSIS  non-fatal
        ├── BuildError             BUILD     retryable
        ├── TargetTimeoutError     TIMEOUT   retryable (also builtin TimeoutError)
        └── CacheError             CACHE     fatal to the run
            ├── KeyNotFoundError   (also KeyError)
            └── CacheBackendError

Examples:
    >>> err = CycleDetectedError(["a", "b", "a"])
    >>> err.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> err.retryable
    False
    >>> BuildError("boom").with_context(target="model").to_dict()["context"]
    {'target': 'model'}

Tags:
    error-handling, exception-hierarchy, retry-logic, remake

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import builtins
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification and run-level decisions.

    The scheduler only looks at the category to decide between
    "abort the run", "record and retry" and "record and move on".
    """

    CONFIG = "CONFIG"          # Plan, graph, option validation
    ANALYSIS = "ANALYSIS"      # Static dependency detection
    BUILD = "BUILD"            # A command raised
    TIMEOUT = "TIMEOUT"        # elapsed / cpu limit exceeded
    CACHE = "CACHE"            # Storage backend I/O, missing keys

    INTERNAL = "INTERNAL"      # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        target: Name of the target being analyzed or built.
        run_id: Identifier of the ``make()`` run.
        worker: Worker identifier (``loop``, ``persistent-3``, ...).
        attempt: One-based attempt number when the error was raised.
        metadata: Free-form extra fields.
    """

    target: str | None = None
    run_id: str | None = None
    worker: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["target", "run_id", "worker", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RemakeError(Exception):
    """
    Base exception for all remake errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Examples:
        >>> error = RemakeError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(target="a").context.target
        'a'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RemakeError:
        """
        Add context to this error (fluent API).

        Usage:
            raise BuildError("Failed").with_context(target="model", attempt=2)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (fatal, raised before any build starts)
# =============================================================================


class ConfigError(RemakeError):
    """Invalid plan, graph or options."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class PlanValidationError(ConfigError):
    """The plan table is malformed."""

    def __init__(self, message: str, *, field_name: str | None = None, **kwargs: Any):
        self.field_name = field_name
        super().__init__(message, **kwargs)


class DuplicateTargetError(PlanValidationError):
    """Two plan rows share a target name."""

    def __init__(self, duplicates: list[str]):
        self.duplicates = sorted(set(duplicates))
        super().__init__(
            f"Duplicated target names in plan: {', '.join(self.duplicates)}",
            field_name="target",
        )


class CycleDetectedError(ConfigError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")


class InvalidOverrideError(ConfigError):
    """A per-target override column holds a value of the wrong type."""

    def __init__(self, target: str, column: str, value: Any, expected: str):
        self.target = target
        self.column = column
        self.value = value
        super().__init__(
            f"Target '{target}': invalid {column}={value!r} (expected {expected})",
            context=ErrorContext(target=target),
        )


class IncompatibleOptionsError(ConfigError):
    """A combination of run options cannot work at runtime."""


class HashAlgorithmMismatchError(ConfigError):
    """The cache was created with a different hash algorithm."""

    def __init__(self, cache_algorithm: str, requested: str):
        self.cache_algorithm = cache_algorithm
        self.requested = requested
        super().__init__(
            f"Cache uses hash algorithm '{cache_algorithm}' but '{requested}' was requested. "
            "Destroy the cache or request the cache's algorithm."
        )


# =============================================================================
# ANALYSIS ERRORS (non-fatal)
# =============================================================================


class AnalysisError(RemakeError):
    """Dependencies of a command could not be determined statically."""

    default_category = ErrorCategory.ANALYSIS
    default_retryable = False


# =============================================================================
# BUILD ERRORS (retryable, recorded in metadata)
# =============================================================================


class BuildError(RemakeError):
    """A target's command raised while building."""

    default_category = ErrorCategory.BUILD
    default_retryable = True


class TargetTimeoutError(RemakeError, builtins.TimeoutError):
    """
    A target exceeded its elapsed or CPU limit.

    Inherits from the builtin ``TimeoutError`` so generic handlers still
    catch it.

    Attributes:
        limit: Which limit fired (``"elapsed"`` or ``"cpu"``).
        seconds: The limit value in seconds.
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, limit: str, seconds: float, target: str | None = None):
        self.limit = limit
        self.seconds = seconds
        label = f"Target '{target}'" if target else "Command"
        super().__init__(
            f"{label} exceeded its {limit} limit of {seconds:g}s",
            context=ErrorContext(target=target),
        )

    def __reduce__(self):
        return (self.__class__, (self.limit, self.seconds, self.context.target))


# =============================================================================
# CACHE ERRORS (fatal to the run)
# =============================================================================


class CacheError(RemakeError):
    """Storage-level failure."""

    default_category = ErrorCategory.CACHE
    default_retryable = False


class KeyNotFoundError(CacheError, KeyError):
    """A key is not present in the requested namespace."""

    def __init__(self, key: str, namespace: str):
        self.key = key
        self.namespace = namespace
        super().__init__(f"Key '{key}' not found in namespace '{namespace}'")

    def __str__(self) -> str:
        return self.message

    def __reduce__(self):
        return (self.__class__, (self.key, self.namespace))


class CacheBackendError(CacheError):
    """The storage backend failed (I/O error, lock contention, corruption)."""


class SerializationError(CacheError):
    """A target value cannot be pickled. Fails that target, not the run."""


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RemakeError",
    "ConfigError",
    "PlanValidationError",
    "DuplicateTargetError",
    "CycleDetectedError",
    "InvalidOverrideError",
    "IncompatibleOptionsError",
    "HashAlgorithmMismatchError",
    "AnalysisError",
    "BuildError",
    "TargetTimeoutError",
    "CacheError",
    "KeyNotFoundError",
    "CacheBackendError",
    "SerializationError",
]
