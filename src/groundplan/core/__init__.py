"""Core modules for groundplan - centralized error definitions."""

from groundplan.core.errors import (
    ApprovalRequired,
    AttributeValidationError,
    BlockedError,
    ConfigurationError,
    CycleDetected,
    DocumentError,
    DuplicateResource,
    ExitCode,
    FatalProviderError,
    GroundplanError,
    LockHeld,
    ProviderError,
    StaleLock,
    StalePlan,
    StateError,
    TransientProviderError,
    TypeMismatch,
    UnknownResourceType,
    UnresolvedReference,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "GroundplanError",
    "ConfigurationError",
    "ValidationError",
    "DocumentError",
    "DuplicateResource",
    "UnknownResourceType",
    "AttributeValidationError",
    "UnresolvedReference",
    "CycleDetected",
    "TypeMismatch",
    "StateError",
    "LockHeld",
    "StaleLock",
    "StalePlan",
    "ProviderError",
    "TransientProviderError",
    "FatalProviderError",
    "BlockedError",
    "ApprovalRequired",
    "main_with_error_handling",
    "format_error_message",
]
