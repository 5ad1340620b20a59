"""FastAPI routes for processing errors.

Lists failed invoice/label creations with per-status stats and lets an
operator retry or skip them.
"""

from fastapi import APIRouter, Depends, Query

from reconciler.api.dependencies import (
    get_actor_id,
    get_app_config,
    get_repository,
    get_retry_handlers,
)
from reconciler.api.schemas import (
    ProcessingErrorListResponse,
    ProcessingErrorResponse,
    RetryResultResponse,
    SkipErrorRequest,
)
from reconciler.config import ReconcilerConfig
from reconciler.db.models import ProcessingErrorStatus, ProcessingErrorType
from reconciler.services.processing_error_service import (
    ProcessingErrorService,
    RetryHandler,
)
from reconciler.services.repository import SqlAlchemyRepository

router = APIRouter(prefix="/processing-errors", tags=["processing-errors"])


def get_error_service(
    repository: SqlAlchemyRepository = Depends(get_repository),
    handlers: dict[ProcessingErrorType, RetryHandler] = Depends(get_retry_handlers),
    config: ReconcilerConfig = Depends(get_app_config),
) -> ProcessingErrorService:
    """Dependency to get ProcessingErrorService instance."""
    return ProcessingErrorService(repository, handlers, config)


@router.get("", response_model=ProcessingErrorListResponse)
def list_processing_errors(
    status: ProcessingErrorStatus | None = Query(None, description="Filter by status"),
    type: ProcessingErrorType | None = Query(None, description="Filter by error type"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: ProcessingErrorService = Depends(get_error_service),
) -> ProcessingErrorListResponse:
    """List processing errors, newest first, with per-status stats."""
    errors = svc.list_errors(status=status, error_type=type, limit=limit, offset=offset)
    return ProcessingErrorListResponse(
        errors=[ProcessingErrorResponse.model_validate(e) for e in errors],
        stats=svc.stats(),
    )


@router.post("/{error_id}/retry", response_model=RetryResultResponse)
async def retry_processing_error(
    error_id: str,
    actor_id: str = Depends(get_actor_id),
    svc: ProcessingErrorService = Depends(get_error_service),
) -> RetryResultResponse:
    """Retry the failed operation.

    A failed retry is a 200 response with success=false. Retrying a
    failed, resolved or skipped error is a 409.
    """
    outcome = await svc.retry(error_id, actor_id)
    return RetryResultResponse(**outcome.to_dict())


@router.post("/{error_id}/skip", response_model=ProcessingErrorResponse)
def skip_processing_error(
    error_id: str,
    request: SkipErrorRequest | None = None,
    actor_id: str = Depends(get_actor_id),
    svc: ProcessingErrorService = Depends(get_error_service),
) -> ProcessingErrorResponse:
    """Mark an error as skipped."""
    error = svc.skip(error_id, actor_id, note=request.note if request else None)
    return ProcessingErrorResponse.model_validate(error)
