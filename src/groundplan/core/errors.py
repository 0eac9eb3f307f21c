"""
Unified error handling for groundplan.

Every error raised by the engine derives from GroundplanError and carries
an exit code so CLI commands can report failures consistently.

Exit Codes:
- 0: Success
- 1: Warning (advisory, operation succeeded with warnings)
- 2: Blocked (operation blocked, e.g., by an approval gate)
- 10: Configuration error
- 11: Provider error (resource handler failure)
- 12: Validation error (document, graph, diff or schedule)
- 13: State error (locking, stale plans)
- 14: Partially applied (some operations failed during apply)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    BLOCKED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    STATE_ERROR = 13
    PARTIAL_APPLY = 14
    UNKNOWN_ERROR = 127


class GroundplanError(Exception):
    """Base exception for groundplan errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(GroundplanError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ValidationError(GroundplanError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class DocumentError(ValidationError):
    """Raised when a desired-state document cannot be loaded or parsed."""


class DuplicateResource(ValidationError):
    """Raised when two resources share a logical name."""

    def __init__(self, name: str):
        super().__init__(f"Duplicate resource name: {name}", {"resource": name})
        self.name = name


class UnknownResourceType(ValidationError):
    """Raised when no schema or handler exists for a resource type."""

    def __init__(self, resource_type: str, resource: str | None = None):
        details = {"type": resource_type}
        if resource:
            details["resource"] = resource
        super().__init__(f"Unknown resource type: {resource_type}", details)
        self.resource_type = resource_type


class AttributeValidationError(ValidationError):
    """Raised when a resource's attributes do not match its type schema."""


class UnresolvedReference(ValidationError):
    """Raised when a reference or dependency targets a non-existent resource."""

    def __init__(self, source: str, target: str, reason: str | None = None):
        message = f"{source} references unknown resource {target}"
        if reason:
            message = f"{source} references {target}: {reason}"
        super().__init__(message, {"source": source, "target": target})
        self.source = source
        self.target = target


class CycleDetected(ValidationError):
    """Raised when the dependency relation contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        path = " -> ".join(self.cycle)
        super().__init__(f"Dependency cycle detected: {path}", {"cycle": path})


class TypeMismatch(ValidationError):
    """Raised when a resource's declared type differs from its recorded type."""

    def __init__(self, name: str, declared: str, recorded: str):
        super().__init__(
            f"Resource {name} is declared as {declared} but recorded as {recorded}; "
            "changing a resource's type requires an explicit state migration",
            {"resource": name, "declared": declared, "recorded": recorded},
        )
        self.name = name
        self.declared = declared
        self.recorded = recorded


class StateError(GroundplanError):
    """Raised for state store failures."""

    exit_code = ExitCode.STATE_ERROR


class LockHeld(StateError):
    """Raised when a scope's lock is held by another run."""

    def __init__(self, scope: str, lock: Any = None):
        details: dict[str, Any] = {"scope": scope}
        if lock is not None:
            details["lock_id"] = lock.lock_id
            details["holder"] = lock.holder
        super().__init__(f"State lock for scope '{scope}' is held", details)
        self.scope = scope
        self.lock = lock


class StaleLock(StateError):
    """Raised when a lock token no longer matches the scope's current holder."""

    def __init__(self, scope: str, lock_id: str):
        super().__init__(
            f"Lock {lock_id} is no longer held for scope '{scope}'",
            {"scope": scope, "lock_id": lock_id},
        )
        self.scope = scope
        self.lock_id = lock_id


class StalePlan(StateError):
    """Raised when applying a plan computed against an older snapshot."""

    def __init__(self, scope: str, planned_version: int, current_version: int):
        super().__init__(
            f"Plan for scope '{scope}' was computed against state version "
            f"{planned_version} but the current version is {current_version}",
            {
                "scope": scope,
                "planned_version": planned_version,
                "current_version": current_version,
            },
        )


class ProviderError(GroundplanError):
    """Raised when a resource handler fails."""

    exit_code = ExitCode.PROVIDER_ERROR
    retryable: bool = False


class TransientProviderError(ProviderError):
    """Handler failure that may succeed on retry (rate limits, timeouts)."""

    retryable = True


class FatalProviderError(ProviderError):
    """Handler failure that must not be retried."""


class BlockedError(GroundplanError):
    """Raised when an operation is blocked (e.g., by an approval gate)."""

    exit_code = ExitCode.BLOCKED


class ApprovalRequired(BlockedError):
    """Raised when applying to a scope that requires approval without it."""

    def __init__(self, scope: str):
        super().__init__(
            f"Scope '{scope}' requires an approved plan before apply", {"scope": scope}
        )


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Exit codes:
        - GroundplanError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except GroundplanError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                from groundplan.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: GroundplanError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
