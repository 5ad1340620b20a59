"""FastAPI routes for manifests.

Provides REST API endpoints for listing manifests, moving them through
their lifecycle and running the fiscal flow that matches their type.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from reconciler.api.dependencies import (
    get_actor_id,
    get_app_config,
    get_provider_factory,
    get_repository,
)
from reconciler.api.schemas import (
    BatchResultResponse,
    ManifestDetailResponse,
    ManifestItemResponse,
    ManifestListResponse,
    ManifestResponse,
    ProcessManifestRequest,
)
from reconciler.config import ReconcilerConfig
from reconciler.db.connection import get_db
from reconciler.db.models import ManifestStatus, ManifestType
from reconciler.errors import NotFoundError
from reconciler.services.batch_processor import ProviderFactory
from reconciler.services.manifest_service import ManifestService, ManifestSummary
from reconciler.services.payment_collection import PaymentCollectionFlow
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.stornare import StornareFlow

router = APIRouter(prefix="/manifests", tags=["manifests"])


def get_manifest_service(db: Session = Depends(get_db)) -> ManifestService:
    """Dependency to get ManifestService instance."""
    return ManifestService(db)


def _to_response(summary: ManifestSummary) -> ManifestResponse:
    data = ManifestResponse.model_validate(summary.manifest).model_dump()
    data.update(
        item_count=summary.item_count,
        processed_count=summary.processed_count,
        error_count=summary.error_count,
        pending_count=summary.pending_count,
    )
    return ManifestResponse(**data)


@router.get("", response_model=ManifestListResponse)
def list_manifests(
    type: ManifestType | None = Query(None, description="Filter by manifest type"),
    status: ManifestStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    svc: ManifestService = Depends(get_manifest_service),
) -> ManifestListResponse:
    """List manifests, newest first, with item counts."""
    summaries = svc.list_manifests(
        manifest_type=type, status=status, limit=limit, offset=offset
    )
    return ManifestListResponse(
        manifests=[_to_response(s) for s in summaries],
        limit=limit,
        offset=offset,
    )


@router.get("/{manifest_id}", response_model=ManifestDetailResponse)
def get_manifest(
    manifest_id: str,
    svc: ManifestService = Depends(get_manifest_service),
) -> ManifestDetailResponse:
    """Get a manifest with its items.

    Raises:
        NotFoundError: 404 if the manifest does not exist.
    """
    summary = svc.get_summary(manifest_id)
    data = _to_response(summary).model_dump()
    items = [ManifestItemResponse.model_validate(i) for i in summary.manifest.items]
    return ManifestDetailResponse(**data, items=items)


@router.post("/{manifest_id}/submit", response_model=ManifestResponse)
def submit_manifest(
    manifest_id: str,
    svc: ManifestService = Depends(get_manifest_service),
) -> ManifestResponse:
    """Submit a draft manifest for verification before confirmation.

    Raises:
        NotFoundError: 404 if the manifest does not exist.
        InvalidStateTransition: 409 if it is not a draft.
    """
    svc.submit_for_verification(manifest_id)
    return _to_response(svc.get_summary(manifest_id))


@router.post("/{manifest_id}/confirm", response_model=ManifestResponse)
def confirm_manifest(
    manifest_id: str,
    actor_id: str = Depends(get_actor_id),
    svc: ManifestService = Depends(get_manifest_service),
) -> ManifestResponse:
    """Confirm a draft or pending-verification manifest.

    Raises:
        NotFoundError: 404 if the manifest does not exist.
        InvalidStateTransition: 409 if it is already confirmed.
    """
    svc.confirm(manifest_id, actor_id)
    return _to_response(svc.get_summary(manifest_id))


@router.post("/{manifest_id}/release", response_model=ManifestResponse)
def release_manifest(
    manifest_id: str,
    min_age_minutes: int = Query(30, ge=0, description="Minimum claim age to release"),
    actor_id: str = Depends(get_actor_id),
    svc: ManifestService = Depends(get_manifest_service),
) -> ManifestResponse:
    """Release the claim of a manifest left in processing by a dead run.

    Raises:
        NotFoundError: 404 if the manifest does not exist.
        ConflictError: 409 if it is not processing or the claim is too recent.
    """
    svc.release_claim(manifest_id, actor_id, min_age_minutes=min_age_minutes)
    return _to_response(svc.get_summary(manifest_id))


@router.post("/{manifest_id}/process", response_model=BatchResultResponse)
async def process_manifest(
    manifest_id: str,
    request: ProcessManifestRequest | None = None,
    actor_id: str = Depends(get_actor_id),
    svc: ManifestService = Depends(get_manifest_service),
    repository: SqlAlchemyRepository = Depends(get_repository),
    config: ReconcilerConfig = Depends(get_app_config),
    provider_factory: ProviderFactory | None = Depends(get_provider_factory),
) -> BatchResultResponse:
    """Run the flow matching the manifest type.

    Return manifests cancel their invoices; delivery manifests mark them
    paid. Precondition failures come back as a result with one error,
    not as an HTTP error.
    """
    manifest = svc.get_manifest(manifest_id)
    if manifest is None:
        raise NotFoundError("Manifest", manifest_id)

    if manifest.type == ManifestType.return_.value:
        flow = StornareFlow(repository, provider_factory, config)
        result = await flow.process(manifest_id, actor_id)
    elif manifest.type == ManifestType.delivery.value:
        collect_type = request.collect_type if request else None
        flow = PaymentCollectionFlow(repository, provider_factory, config)
        result = await flow.process(manifest_id, actor_id, collect_type=collect_type)
    else:
        raise HTTPException(
            status_code=400, detail=f"Unsupported manifest type: {manifest.type}"
        )
    return BatchResultResponse(**result.to_dict())
