"""Pydantic schemas for API request/response validation.

This module defines the data contracts for the reconciler REST API:
manifests and their batch results, processing errors, return linking
and manual-operation checks.
"""

from pydantic import BaseModel, ConfigDict, Field


# Manifest schemas


class ManifestItemResponse(BaseModel):
    """Response schema for a manifest item."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    shipment_number: str
    original_shipment_number: str | None = None
    order_id: str | None = None
    invoice_id: str | None = None
    status: str
    error_message: str | None = None
    processed_at: str | None = None


class ManifestResponse(BaseModel):
    """Response schema for a manifest with item counts."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    status: str
    document_date: str
    confirmed_at: str | None = None
    confirmed_by: str | None = None
    processing_started_at: str | None = None
    processed_at: str | None = None
    created_at: str
    item_count: int = 0
    processed_count: int = 0
    error_count: int = 0
    pending_count: int = 0


class ManifestDetailResponse(ManifestResponse):
    """Response schema for a manifest including its items."""

    items: list[ManifestItemResponse] = []


class ManifestListResponse(BaseModel):
    """Response schema for listing manifests."""

    manifests: list[ManifestResponse]
    limit: int
    offset: int


class ProcessManifestRequest(BaseModel):
    """Request schema for processing a manifest."""

    collect_type: str | None = Field(
        None, description="Provider collection type for delivery manifests"
    )


class BatchErrorResponse(BaseModel):
    item_id: str
    shipment_number: str
    invoice_number: str | None = None
    error: str
    code: str | None = None


class BatchResultResponse(BaseModel):
    """Aggregated outcome of a manifest run."""

    success: bool
    total_processed: int
    success_count: int
    error_count: int
    skipped_count: int
    errors: list[BatchErrorResponse]


# Processing error schemas


class ProcessingErrorResponse(BaseModel):
    """Response schema for a processing error."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    type: str
    status: str
    error_message: str
    retry_count: int
    max_retries: int
    retries_left: int
    last_retry_at: str | None = None
    resolved_at: str | None = None
    resolved_by: str | None = None
    resolution: str | None = None
    resolution_note: str | None = None
    created_at: str


class ProcessingErrorListResponse(BaseModel):
    errors: list[ProcessingErrorResponse]
    stats: dict[str, int]


class SkipErrorRequest(BaseModel):
    note: str | None = Field(None, max_length=1000)


class RetryResultResponse(BaseModel):
    """Outcome of a retry attempt."""

    success: bool
    status: str
    retries_left: int
    message: str
    data: dict = {}


# Return schemas


class LinkReturnRequest(BaseModel):
    return_number: str = Field(..., min_length=1, max_length=64)
    order_id: str = Field(..., min_length=1)


class LinkReturnResponse(BaseModel):
    success: bool
    message: str
    return_id: str
    order_id: str
    already_linked: bool
    stock_processed: int


# Invoice operation checks


class OperationCheckResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    manifest_id: str | None = None
    manifest_type: str | None = None


class InvoiceOperationsResponse(BaseModel):
    """Whether manual cancel / mark-paid is allowed for an invoice."""

    invoice_id: str
    cancel: OperationCheckResponse
    mark_paid: OperationCheckResponse
