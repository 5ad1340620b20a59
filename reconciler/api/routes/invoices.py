"""FastAPI routes for invoice operation checks."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reconciler.api.schemas import InvoiceOperationsResponse, OperationCheckResponse
from reconciler.db.connection import get_db
from reconciler.db.models import Invoice
from reconciler.errors import NotFoundError
from reconciler.services.operation_guard import OperationGuard

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("/{invoice_id}/operations", response_model=InvoiceOperationsResponse)
def get_invoice_operations(
    invoice_id: str,
    db: Session = Depends(get_db),
) -> InvoiceOperationsResponse:
    """Report whether the invoice may be cancelled or marked paid by hand."""
    if db.get(Invoice, invoice_id) is None:
        raise NotFoundError("Invoice", invoice_id)

    guard = OperationGuard(db)
    return InvoiceOperationsResponse(
        invoice_id=invoice_id,
        cancel=OperationCheckResponse(**guard.can_cancel_invoice(invoice_id).to_dict()),
        mark_paid=OperationCheckResponse(**guard.can_mark_invoice_paid(invoice_id).to_dict()),
    )
