"""Stornare flow: cancel the invoices of every shipment on a return manifest.

Each cancellation issues a reversal (storno) document at the invoicing
provider; the reversal's series and number are kept on the invoice.
"""

from functools import partial
from typing import Any

from reconciler.config import ReconcilerConfig, get_config
from reconciler.db.models import (
    CancellationSource,
    Invoice,
    InvoiceStatus,
    Manifest,
    ManifestItemStatus,
    ManifestType,
)
from reconciler.errors import AlreadyDoneError, ProviderError, ReconcilerError
from reconciler.providers.base import CancelResult, InvoicingProvider
from reconciler.providers.oblio import create_provider_for_company
from reconciler.services.batch_processor import (
    BatchProcessor,
    BatchResult,
    ItemOperation,
    ProgressCallback,
    ProviderFactory,
)
from reconciler.services.repository import ManifestRepository


class StornoOperation(ItemOperation):
    """Cancel an invoice through the provider."""

    manifest_type = ManifestType.return_
    audit_action = "invoice.cancelled_via_manifest"
    source = "manifest_return"

    def check_already_done(self, invoice: Invoice) -> None:
        if invoice.is_cancelled:
            raise AlreadyDoneError(
                "E-2005",
                ReconcilerError.from_code(
                    "E-2005", invoice_number=invoice.number, state="cancelled"
                ).message,
                item_status=ManifestItemStatus.processed.value,
            )

    async def perform(
        self, provider: InvoicingProvider, manifest: Manifest, invoice: Invoice
    ) -> CancelResult:
        result = await provider.cancel_invoice(invoice.series_name or "", invoice.number or "")
        if not result.success:
            raise ProviderError("E-3002", result.error or "Provider cancellation failed")
        return result

    def apply(
        self, manifest: Manifest, invoice: Invoice, outcome: CancelResult, now: str
    ) -> dict[str, Any]:
        invoice.status = InvoiceStatus.cancelled.value
        invoice.cancelled_at = now
        invoice.cancel_reason = f"Return manifest {manifest.id}"
        invoice.cancellation_source = CancellationSource.manifest_return.value
        invoice.cancelled_from_manifest_id = manifest.id
        invoice.storno_number = outcome.cancelled_invoice_number
        invoice.storno_series = outcome.cancelled_invoice_series
        return {
            "storno_number": outcome.cancelled_invoice_number,
            "storno_series": outcome.cancelled_invoice_series,
        }


class StornareFlow:
    """Cancel all invoices on a confirmed return manifest.

    Example:
        flow = StornareFlow(SqlAlchemyRepository(db))
        result = await flow.process(manifest_id, actor_id="user-1")
    """

    def __init__(
        self,
        repository: ManifestRepository,
        provider_factory: ProviderFactory | None = None,
        config: ReconcilerConfig | None = None,
    ) -> None:
        cfg = config or get_config()
        self._processor = BatchProcessor(
            repository,
            provider_factory or partial(create_provider_for_company, config=cfg),
            StornoOperation(),
        )

    async def process(
        self,
        manifest_id: str,
        actor_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        return await self._processor.run(manifest_id, actor_id, on_progress=on_progress)
