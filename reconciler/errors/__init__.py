"""Error handling framework for the reconciler.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions, including the batch per-item taxonomy
- Error formatting and grouping utilities

Error categories:
- E-1xxx: Manifest and precondition errors
- E-2xxx: Missing association errors
- E-3xxx: Invoicing provider errors
- E-4xxx: System/internal errors
- E-5xxx: Provider authentication errors
"""

from reconciler.errors.domain import (
    AlreadyDoneError,
    BatchItemError,
    ConflictError,
    DomainError,
    InvalidStateTransition,
    MissingAssociationError,
    NotFoundError,
    PreconditionError,
    ProviderError,
    ValidationError,
)
from reconciler.errors.formatter import (
    ReconcilerError,
    format_error,
    format_error_summary,
    group_errors,
)
from reconciler.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "InvalidStateTransition",
    "BatchItemError",
    "PreconditionError",
    "MissingAssociationError",
    "AlreadyDoneError",
    "ProviderError",
    # Formatter
    "ReconcilerError",
    "format_error",
    "group_errors",
    "format_error_summary",
]
