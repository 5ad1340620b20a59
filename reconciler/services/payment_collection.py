"""Payment collection flow: mark invoices paid for a delivery manifest.

The courier's delivery manifest confirms cash on delivery was collected.
Each invoice is recorded as fully collected at the provider, dated with
the manifest's document date, and marked paid locally for the order total.
"""

from decimal import Decimal
from functools import partial
from typing import Any

from reconciler.config import ReconcilerConfig, get_config
from reconciler.db.models import (
    Invoice,
    Manifest,
    ManifestItemStatus,
    ManifestType,
    PaymentSource,
    PaymentStatus,
)
from reconciler.errors import AlreadyDoneError, ProviderError, ReconcilerError
from reconciler.providers.base import CollectResult, InvoicingProvider
from reconciler.providers.oblio import create_provider_for_company
from reconciler.services.batch_processor import (
    BatchProcessor,
    BatchResult,
    ItemOperation,
    ProgressCallback,
    ProviderFactory,
)
from reconciler.services.repository import ManifestRepository


class CollectPaymentOperation(ItemOperation):
    """Record full collection of an invoice through the provider.

    Attributes:
        collect_type: Provider collection type (e.g. "Ramburs").
    """

    manifest_type = ManifestType.delivery
    audit_action = "invoice.paid_via_manifest"
    source = "manifest_delivery"

    def __init__(self, collect_type: str) -> None:
        self.collect_type = collect_type

    def check_already_done(self, invoice: Invoice) -> None:
        if invoice.is_paid:
            raise AlreadyDoneError(
                "E-2005",
                ReconcilerError.from_code(
                    "E-2005", invoice_number=invoice.number, state="paid"
                ).message,
                item_status=ManifestItemStatus.processed.value,
            )
        # Cancelled invoices can never be paid; counted as skipped, not failed
        if invoice.is_cancelled:
            raise AlreadyDoneError(
                "E-2004",
                ReconcilerError.from_code("E-2004", invoice_number=invoice.number).message,
                item_status=ManifestItemStatus.error.value,
            )

    async def perform(
        self, provider: InvoicingProvider, manifest: Manifest, invoice: Invoice
    ) -> CollectResult:
        result = await provider.collect_invoice(
            invoice.series_name or "",
            invoice.number or "",
            self.collect_type,
            manifest.document_date,
        )
        if not result.success:
            raise ProviderError("E-3002", result.error or "Provider collection failed")
        return result

    def apply(
        self, manifest: Manifest, invoice: Invoice, outcome: CollectResult, now: str
    ) -> dict[str, Any]:
        order = invoice.order
        amount = order.total_price if order is not None else Decimal("0")

        invoice.payment_status = PaymentStatus.paid.value
        invoice.paid_amount = amount
        invoice.paid_at = manifest.document_date
        invoice.payment_source = PaymentSource.manifest_delivery.value
        invoice.paid_from_manifest_id = manifest.id
        return {
            "collect_type": self.collect_type,
            "collect_date": manifest.document_date,
            "paid_amount": str(amount),
        }


class PaymentCollectionFlow:
    """Mark all invoices on a confirmed delivery manifest as paid.

    Example:
        flow = PaymentCollectionFlow(SqlAlchemyRepository(db))
        result = await flow.process(manifest_id, actor_id="user-1")
    """

    def __init__(
        self,
        repository: ManifestRepository,
        provider_factory: ProviderFactory | None = None,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self._repository = repository
        self._config = config or get_config()
        self._provider_factory = provider_factory or partial(
            create_provider_for_company, config=self._config
        )

    async def process(
        self,
        manifest_id: str,
        actor_id: str,
        collect_type: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Run the flow.

        Args:
            manifest_id: Delivery manifest to process.
            actor_id: Identity recorded in audit entries.
            collect_type: Provider collection type; defaults to
                payment.collect_type from config.
            on_progress: Optional progress callback.
        """
        operation = CollectPaymentOperation(
            collect_type or self._config.payment.collect_type
        )
        processor = BatchProcessor(self._repository, self._provider_factory, operation)
        return await processor.run(manifest_id, actor_id, on_progress=on_progress)
