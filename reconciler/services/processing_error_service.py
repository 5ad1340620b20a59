"""Processing error tracker: bounded retry and manual skip.

Failed invoice or shipping-label creation is recorded as a ProcessingError.
Operators retry it (up to max_retries) or skip it.

Lifecycle:
    pending -> retrying -> resolved (terminal)
                        -> pending (retries left) | failed (limit reached)
    pending | retrying | failed -> skipped (terminal, manual)

failed only leaves through skip: retry() on a failed error is rejected,
so retry_count can never pass max_retries.
"""

import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from reconciler.config import ReconcilerConfig, get_config
from reconciler.db.models import (
    ProcessingError,
    ProcessingErrorStatus,
    ProcessingErrorType,
    Resolution,
    generate_uuid,
    utc_now_iso,
)
from reconciler.errors import InvalidStateTransition, NotFoundError, ValidationError
from reconciler.services.audit_service import build_audit_entry
from reconciler.services.repository import ProcessingErrorRepository

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: dict[ProcessingErrorStatus, list[ProcessingErrorStatus]] = {
    ProcessingErrorStatus.pending: [
        ProcessingErrorStatus.retrying,
        ProcessingErrorStatus.skipped,
    ],
    ProcessingErrorStatus.retrying: [
        ProcessingErrorStatus.resolved,
        ProcessingErrorStatus.pending,
        ProcessingErrorStatus.failed,
        # a run interrupted mid-retry can be retried again
        ProcessingErrorStatus.retrying,
        ProcessingErrorStatus.skipped,
    ],
    ProcessingErrorStatus.failed: [ProcessingErrorStatus.skipped],
    ProcessingErrorStatus.resolved: [],  # terminal
    ProcessingErrorStatus.skipped: [],  # terminal
}


@dataclass
class OperationResult:
    """Outcome of re-running the failed order operation."""

    success: bool
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryOutcome:
    """What a retry() call did to the error."""

    success: bool
    status: ProcessingErrorStatus
    retries_left: int
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "retries_left": self.retries_left,
            "message": self.message,
            "data": self.data,
        }


# Re-runs invoice or label creation for an order
RetryHandler = Callable[[str], Awaitable[OperationResult]]


class ProcessingErrorService:
    """Service for recording, retrying and skipping processing errors.

    Attributes:
        _repository: Processing error persistence
        _handlers: Retry handler per error type
    """

    def __init__(
        self,
        repository: ProcessingErrorRepository,
        handlers: dict[ProcessingErrorType, RetryHandler] | None = None,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._repository = repository
        self._handlers = handlers or {}
        self._config = config or get_config()

    def _require(self, error_id: str) -> ProcessingError:
        error = self._repository.get_error(error_id)
        if error is None:
            raise NotFoundError("ProcessingError", error_id)
        return error

    def record(
        self,
        order_id: str,
        error_type: ProcessingErrorType,
        message: str,
        max_retries: int | None = None,
    ) -> ProcessingError:
        """Record a failed order operation as a pending error."""
        error = ProcessingError(
            id=generate_uuid(),
            order_id=order_id,
            type=error_type.value,
            status=ProcessingErrorStatus.pending.value,
            error_message=message,
            retry_count=0,
            max_retries=max_retries or self._config.processing_errors.max_retries,
            created_at=utc_now_iso(),
        )
        error = self._repository.add_error(error)
        logger.info("Recorded %s error for order %s", error_type.value, order_id)
        return error

    def get_error(self, error_id: str) -> ProcessingError:
        return self._require(error_id)

    def list_errors(
        self,
        status: ProcessingErrorStatus | None = None,
        error_type: ProcessingErrorType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingError]:
        return self._repository.list_errors(
            status=status,
            error_type=error_type.value if error_type is not None else None,
            limit=limit,
            offset=offset,
        )

    def stats(self) -> dict[str, int]:
        """Error counts per status, every status present."""
        counts = self._repository.count_errors_by_status()
        stats = {status.value: counts.get(status.value, 0) for status in ProcessingErrorStatus}
        stats["total"] = sum(counts.values())
        return stats

    async def retry(self, error_id: str, actor_id: str) -> RetryOutcome:
        """Retry the failed operation behind an error.

        The attempt is counted and committed before the handler runs.
        Handler failures (returned or raised) are reported in the outcome,
        never raised.

        Args:
            error_id: Error to retry.
            actor_id: User requesting the retry.

        Returns:
            RetryOutcome with the new status and retries left.

        Raises:
            NotFoundError: If the error does not exist.
            InvalidStateTransition: If the error is failed, resolved or
                skipped, or has no retries left.
            ValidationError: If no handler is registered for the error type.
        """
        error = self._require(error_id)
        current = ProcessingErrorStatus(error.status)
        allowed = VALID_TRANSITIONS[current]

        if ProcessingErrorStatus.retrying not in allowed:
            raise InvalidStateTransition(
                "ProcessingError", current, ProcessingErrorStatus.retrying, allowed
            )
        if error.retry_count >= error.max_retries:
            raise InvalidStateTransition(
                "ProcessingError",
                current,
                ProcessingErrorStatus.retrying,
                allowed,
                reason=f"retry limit reached ({error.retry_count}/{error.max_retries})",
            )

        handler = self._handlers.get(ProcessingErrorType(error.type))
        if handler is None:
            raise ValidationError(f"No retry handler registered for '{error.type}' errors")

        error.status = ProcessingErrorStatus.retrying.value
        error.retry_count += 1
        error.last_retry_at = utc_now_iso()
        self._repository.save_error(error)

        try:
            result = await handler(error.order_id)
        except Exception as e:
            logger.exception("Retry handler raised for error %s", error_id)
            result = OperationResult(success=False, error=str(e) or type(e).__name__)

        if result.success:
            error.status = ProcessingErrorStatus.resolved.value
            error.resolved_at = utc_now_iso()
            error.resolved_by = actor_id
            error.resolution = Resolution.success.value
            message = "Retry succeeded"
        else:
            error.status = (
                ProcessingErrorStatus.failed.value
                if error.retry_count >= error.max_retries
                else ProcessingErrorStatus.pending.value
            )
            error.error_message = result.error or error.error_message
            message = result.error or "Retry failed"

        self._repository.save_error(
            error,
            [
                build_audit_entry(
                    actor_id,
                    "processing_error.retried",
                    "ProcessingError",
                    error.id,
                    {
                        "order_id": error.order_id,
                        "type": error.type,
                        "attempt": error.retry_count,
                        "status": error.status,
                    },
                )
            ],
        )
        logger.info(
            "Retry %d/%d of error %s -> %s",
            error.retry_count, error.max_retries, error_id, error.status,
        )
        return RetryOutcome(
            success=result.success,
            status=ProcessingErrorStatus(error.status),
            retries_left=error.retries_left,
            message=message,
            data=result.data,
        )

    def skip(self, error_id: str, actor_id: str, note: str | None = None) -> ProcessingError:
        """Skip an error manually (terminal).

        Raises:
            NotFoundError: If the error does not exist.
            InvalidStateTransition: If the error is already resolved or skipped.
        """
        error = self._require(error_id)
        current = ProcessingErrorStatus(error.status)
        allowed = VALID_TRANSITIONS[current]
        if ProcessingErrorStatus.skipped not in allowed:
            raise InvalidStateTransition(
                "ProcessingError", current, ProcessingErrorStatus.skipped, allowed
            )

        error.status = ProcessingErrorStatus.skipped.value
        error.resolved_at = utc_now_iso()
        error.resolved_by = actor_id
        error.resolution = Resolution.skipped.value
        error.resolution_note = note
        self._repository.save_error(
            error,
            [
                build_audit_entry(
                    actor_id,
                    "processing_error.skipped",
                    "ProcessingError",
                    error.id,
                    {"order_id": error.order_id, "type": error.type, "note": note},
                )
            ],
        )
        logger.info("Error %s skipped by %s", error_id, actor_id)
        return error

    async def retry_pending(self, actor_id: str) -> list[RetryOutcome]:
        """Retry every pending error with retries left, one at a time."""
        outcomes = []
        for error in self._repository.list_retryable_errors():
            if ProcessingErrorType(error.type) not in self._handlers:
                logger.warning("No handler for %s error %s, leaving it", error.type, error.id)
                continue
            outcomes.append(await self.retry(error.id, actor_id))
        return outcomes


def load_retry_handlers(
    config: ReconcilerConfig | None = None,
) -> dict[ProcessingErrorType, RetryHandler]:
    """Resolve retry handlers from processing_errors.handlers in config.

    Each value is a "module:callable" path to an async function taking an
    order id and returning an OperationResult.

    Raises:
        ValueError: On an unknown error type or malformed path.
        ImportError: If a handler module cannot be imported.
    """
    cfg = config or get_config()
    handlers: dict[ProcessingErrorType, RetryHandler] = {}
    for type_name, path in cfg.processing_errors.handlers.items():
        error_type = ProcessingErrorType(type_name)
        module_name, _, attr = path.partition(":")
        if not module_name or not attr:
            raise ValueError(f"Invalid handler path for '{type_name}': {path!r}")
        handlers[error_type] = getattr(importlib.import_module(module_name), attr)
    return handlers
