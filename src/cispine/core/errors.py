"""
Structured error types for ci-spine.

Every failure the registry, resolver, or executor raises is a
:class:`SpineError` subclass carrying a category, a retry flag, and an
:class:`ErrorContext` with the pipeline/stage it relates to. Callers can
catch the whole family with one ``except SpineError`` clause, or a single
branch (``ValidationError``, ``VersionError``) when they care.

Hierarchy::

    SpineError
      ├── ValidationError          (VALIDATION)
      │     ├── ParameterTypeError
      │     ├── MissingParameterError
      │     └── UnknownParameterError
      ├── NotFoundError            (NOT_FOUND)
      ├── VersionError             (VERSION)
      │     ├── InvalidVersionTagError
      │     └── VersionConflictError
      ├── ConfigError              (CONFIG)
      └── ExecutionError           (EXECUTION)
            ├── BackendUnavailableError
            └── HookError

Usage::

    from cispine.core.errors import MissingParameterError

    try:
        resolver.plan("docker-image", "v1", {})
    except MissingParameterError as e:
        log.error("plan_rejected", **e.to_dict())

Tags:
    error-handling, exception-hierarchy, error-context, ci-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    VALIDATION = "VALIDATION"  # Bad definition or bad bindings
    NOT_FOUND = "NOT_FOUND"  # Unknown pipeline / version ref
    VERSION = "VERSION"  # Tag parsing, publish conflicts
    CONFIG = "CONFIG"  # Missing/invalid settings
    EXECUTION = "EXECUTION"  # Backend or hook failures
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        pipeline: Name of the pipeline involved
        version_ref: Version reference being published or resolved
        stage: Stage name, when the error concerns one stage
        parameter: Parameter name, when the error concerns one binding
        plan_id: Plan identifier during execution
        metadata: Additional key-value pairs
    """

    pipeline: str | None = None
    version_ref: str | None = None
    stage: str | None = None
    parameter: str | None = None
    plan_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["pipeline", "version_ref", "stage", "parameter", "plan_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SpineError(Exception):
    """
    Base exception for all ci-spine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.
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
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("unknown pipeline").with_context(pipeline="ci")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
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
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(SpineError):
    """A definition or a set of bindings failed validation. Never retryable."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


class ParameterTypeError(ValidationError):
    """A binding's value does not match the declared parameter type."""

    def __init__(self, parameter: str, expected: str, value: Any):
        self.parameter = parameter
        self.expected = expected
        self.value = value
        super().__init__(
            f"Parameter '{parameter}' expects {expected}, got {type(value).__name__}: {value!r}",
            context=ErrorContext(parameter=parameter),
        )


class MissingParameterError(ValidationError):
    """A required parameter has neither a binding nor a default."""

    def __init__(self, parameter: str, pipeline: str | None = None):
        self.parameter = parameter
        super().__init__(
            f"Missing required parameter '{parameter}'",
            context=ErrorContext(parameter=parameter, pipeline=pipeline),
        )


class UnknownParameterError(ValidationError):
    """Bindings name parameters the pipeline does not declare."""

    def __init__(self, parameters: list[str], pipeline: str | None = None):
        self.parameters = sorted(parameters)
        super().__init__(
            f"Unknown parameter(s): {', '.join(self.parameters)}",
            context=ErrorContext(pipeline=pipeline),
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================


class NotFoundError(SpineError):
    """A pipeline name or version reference is not in the registry."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False

    def __init__(self, name: str, version_ref: str | None = None, available: list[str] | None = None):
        self.name = name
        self.version_ref = version_ref
        if version_ref is None:
            message = f"Pipeline '{name}' not found"
        else:
            message = f"Pipeline '{name}' has no version '{version_ref}'"
        if available is not None:
            message += f". Available: {', '.join(available) if available else '(none)'}"
        super().__init__(message, context=ErrorContext(pipeline=name, version_ref=version_ref))


# =============================================================================
# VERSION ERRORS
# =============================================================================


class VersionError(SpineError):
    """Base for version reference failures. Always fatal."""

    default_category = ErrorCategory.VERSION
    default_retryable = False


class InvalidVersionTagError(VersionError):
    """A ref looks like a release tag but is not valid semver."""

    def __init__(self, ref: str, reason: str = ""):
        self.ref = ref
        message = f"Malformed version tag: {ref!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, context=ErrorContext(version_ref=ref))


class VersionConflictError(VersionError):
    """Attempt to publish a version tag that already exists."""

    def __init__(self, name: str, version_ref: str):
        self.name = name
        self.version_ref = version_ref
        super().__init__(
            f"Pipeline '{name}' version '{version_ref}' already exists; tags are immutable",
            context=ErrorContext(pipeline=name, version_ref=version_ref),
        )


# =============================================================================
# CONFIG / EXECUTION ERRORS
# =============================================================================


class ConfigError(SpineError):
    """Configuration or settings error."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ExecutionError(SpineError):
    """Failure while executing a plan."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = False


class BackendUnavailableError(ExecutionError):
    """The execution backend cannot run commands (e.g. ``docker`` not on PATH)."""


class HookError(ExecutionError):
    """A pre-stage hook rejected a stage."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message, context=ErrorContext(stage=stage))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "ValidationError",
    "ParameterTypeError",
    "MissingParameterError",
    "UnknownParameterError",
    "NotFoundError",
    "VersionError",
    "InvalidVersionTagError",
    "VersionConflictError",
    "ConfigError",
    "ExecutionError",
    "BackendUnavailableError",
    "HookError",
]
