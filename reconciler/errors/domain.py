"""Typed domain exceptions for API error mapping and batch classification.

Routes catch specific exception types to return appropriate HTTP status
codes. The batch processor raises the per-item taxonomy
(MissingAssociationError, AlreadyDoneError, ProviderError) inside its
classification step and catches it at the item boundary; only
PreconditionError ends a run before any item is touched.

Usage:
    # In service layer
    raise NotFoundError("Manifest", manifest_id)

    # In route handler
    try:
        manifest = service.get_manifest(manifest_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""

from enum import Enum


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., already linked elsewhere). Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidStateTransition(ConflictError):
    """Raised when attempting a transition the state machine does not allow.

    Attributes:
        entity: Name of the entity (Manifest, ProcessingError).
        current_state: The current state.
        attempted_state: The state that was attempted.
        allowed_transitions: Valid transition targets from current state.
    """

    def __init__(
        self,
        entity: str,
        current_state: Enum,
        attempted_state: Enum,
        allowed_transitions: list,
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.current_state = current_state
        self.attempted_state = attempted_state
        self.allowed_transitions = allowed_transitions
        allowed_str = ", ".join(s.value for s in allowed_transitions) or "none (terminal)"
        message = (
            f"{entity} cannot transition from '{current_state.value}' to "
            f"'{attempted_state.value}'. Allowed transitions: {allowed_str}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# Batch taxonomy


class BatchItemError(DomainError):
    """Base for errors classified at the per-item boundary.

    Attributes:
        code: Registry error code (E-XXXX).
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class PreconditionError(BatchItemError):
    """Manifest cannot be processed at all. Short-circuits the whole run."""


class MissingAssociationError(BatchItemError):
    """Item has no invoice, or the invoice has no provider configuration."""


class AlreadyDoneError(BatchItemError):
    """Operation already applied. Classified as skipped, never a failure.

    Attributes:
        item_status: Status the item is recorded with (processed for a
            true no-op, error when the invoice is blocked in the other
            direction, e.g. paying a cancelled invoice).
    """

    def __init__(self, code: str, message: str, item_status: str) -> None:
        super().__init__(code, message)
        self.item_status = item_status


class ProviderError(BatchItemError):
    """The invoicing provider returned failure or the call raised."""
