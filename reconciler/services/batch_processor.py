"""Manifest batch processor shared by the fiscal flows.

Drives every item of a confirmed manifest through one ItemOperation
(cancel or mark paid) against the invoicing provider. Items are processed
strictly one after another: provider calls are never issued in parallel.

Run outline:
    1. Load the manifest and check preconditions (exists, right type,
       confirmed). A failed precondition returns a result with one
       synthetic error and touches nothing.
    2. Claim the manifest (confirmed -> processing). Losing the claim is
       reported like a failed precondition.
    3. Classify each item before acting, then act. Errors are recorded on
       the item and in the result; nothing raised by one item stops the run.
    4. Mark the manifest processed.

Example:
    processor = BatchProcessor(repository, provider_factory, StornoOperation())
    result = await processor.run(manifest_id, actor_id="user-1")
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable

from reconciler.db.models import (
    Company,
    Invoice,
    Manifest,
    ManifestItem,
    ManifestItemStatus,
    ManifestStatus,
    ManifestType,
    utc_now_iso,
)
from reconciler.errors import (
    AlreadyDoneError,
    BatchItemError,
    MissingAssociationError,
    PreconditionError,
    ProviderError,
    ReconcilerError,
)
from reconciler.providers.base import InvoicingProvider, ProviderAuthError
from reconciler.services.audit_service import build_audit_entry
from reconciler.services.repository import ManifestRepository

logger = logging.getLogger(__name__)

# Callback type for progress reporting
ProgressCallback = Callable[..., Awaitable[None]]

# Resolves the provider client for an invoice's issuing company (None = not configured)
ProviderFactory = Callable[[Company], InvoicingProvider | None]


def item_error(error_cls: type[BatchItemError], code: str, **context: Any) -> BatchItemError:
    """Build a batch taxonomy exception whose message comes from the registry."""
    return error_cls(code, ReconcilerError.from_code(code, **context).message)


@dataclass
class BatchErrorEntry:
    """Per-item error descriptor returned to the caller."""

    item_id: str
    shipment_number: str
    invoice_number: str | None
    error: str
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BatchResult:
    """Aggregated outcome of one manifest run.

    Invariant: success_count + error_count + skipped_count == total_processed.
    """

    success: bool = False
    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list[BatchErrorEntry] = field(default_factory=list)

    @classmethod
    def rejected(cls, error: PreconditionError) -> "BatchResult":
        """Result for a run that failed its preconditions."""
        return cls(
            errors=[
                BatchErrorEntry(
                    item_id="",
                    shipment_number="",
                    invoice_number=None,
                    error=error.message,
                    code=error.code,
                )
            ]
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "total_processed": self.total_processed,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "errors": [e.to_dict() for e in self.errors],
        }

    def to_reconciler_errors(self) -> list[ReconcilerError]:
        """Convert item errors for grouped display (format_error_summary)."""
        converted = []
        for entry in self.errors:
            error = ReconcilerError.from_code(entry.code or "E-4002")
            error.message = entry.error
            if entry.shipment_number:
                error.shipments = [entry.shipment_number]
            converted.append(error)
        return converted


class ItemOperation(ABC):
    """One fiscal action applied to the invoice behind a manifest item.

    Attributes:
        manifest_type: Manifest type the operation is valid for.
        audit_action: Audit action recorded on success.
        source: Source tag stored in audit metadata.
    """

    manifest_type: ManifestType
    audit_action: str
    source: str

    @abstractmethod
    def check_already_done(self, invoice: Invoice) -> None:
        """Raise AlreadyDoneError if the invoice needs no provider call."""
        ...

    @abstractmethod
    async def perform(
        self, provider: InvoicingProvider, manifest: Manifest, invoice: Invoice
    ) -> Any:
        """Call the provider. Raise ProviderError when it reports failure."""
        ...

    @abstractmethod
    def apply(
        self, manifest: Manifest, invoice: Invoice, outcome: Any, now: str
    ) -> dict[str, Any]:
        """Apply a successful provider outcome to the invoice.

        Returns:
            Operation-specific audit metadata.
        """
        ...


class BatchProcessor:
    """Sequential per-item executor for manifest flows.

    Attributes:
        _repository: Persistence for manifests, items, invoices and audit
        _provider_factory: Resolves the provider client per company
        _operation: The fiscal action applied to each item
    """

    def __init__(
        self,
        repository: ManifestRepository,
        provider_factory: ProviderFactory,
        operation: ItemOperation,
    ) -> None:
        self._repository = repository
        self._provider_factory = provider_factory
        self._operation = operation

    async def run(
        self,
        manifest_id: str,
        actor_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        """Process every item of a confirmed manifest.

        Args:
            manifest_id: Manifest to process.
            actor_id: Identity recorded in audit entries.
            on_progress: Optional async callback receiving
                ("item_processed", **details) after each item.

        Returns:
            BatchResult with per-item counts and error descriptors.
        """
        try:
            manifest = self._claim(manifest_id)
        except PreconditionError as e:
            logger.warning("Manifest %s rejected: %s", manifest_id, e.message)
            return BatchResult.rejected(e)

        result = BatchResult()
        providers: dict[str, InvoicingProvider | None] = {}
        items = sorted(manifest.items, key=lambda i: (i.shipment_number, i.id))

        logger.info(
            "Processing %s manifest %s: %d items",
            self._operation.manifest_type.value, manifest_id, len(items),
        )

        try:
            for item in items:
                await self._process_item(manifest, item, actor_id, result, providers)
                if on_progress:
                    try:
                        await on_progress(
                            "item_processed",
                            manifest_id=manifest_id,
                            item_id=item.id,
                            shipment_number=item.shipment_number,
                            status=item.status,
                            error=item.error_message,
                        )
                    except Exception as e:
                        logger.warning(
                            "Progress callback failed for item %s: %s", item.id, e
                        )
        except (Exception, asyncio.CancelledError):
            logger.exception("Run for manifest %s aborted; releasing claim", manifest_id)
            self._repository.release_manifest(manifest_id)
            raise
        finally:
            await self._close_providers(providers)

        self._repository.finish_manifest(manifest_id, utc_now_iso())
        result.success = result.success_count > 0

        logger.info(
            "Manifest %s processed: total=%d success=%d errors=%d skipped=%d",
            manifest_id,
            result.total_processed,
            result.success_count,
            result.error_count,
            result.skipped_count,
        )
        return result

    def _claim(self, manifest_id: str) -> Manifest:
        """Check preconditions and claim the manifest.

        Raises:
            PreconditionError: Manifest missing, wrong type, not confirmed,
                or claimed by a concurrent run.
        """
        manifest = self._repository.get_manifest(manifest_id)
        if manifest is None:
            raise item_error(PreconditionError, "E-1001", manifest_id=manifest_id)

        expected = self._operation.manifest_type.value
        if manifest.type != expected:
            raise item_error(
                PreconditionError,
                "E-1003",
                manifest_id=manifest_id,
                actual=manifest.type,
                expected=expected,
            )

        if manifest.status != ManifestStatus.confirmed.value:
            raise item_error(PreconditionError, "E-1002", status=manifest.status)

        if not self._repository.claim_manifest(manifest_id, utc_now_iso()):
            raise item_error(PreconditionError, "E-1004", manifest_id=manifest_id)

        claimed = self._repository.get_manifest(manifest_id)
        if claimed is None:
            raise item_error(PreconditionError, "E-1001", manifest_id=manifest_id)
        return claimed

    def _resolve_provider(
        self,
        item: ManifestItem,
        providers: dict[str, InvoicingProvider | None],
    ) -> InvoicingProvider:
        """Classify an item before acting on it.

        Raises:
            MissingAssociationError: No invoice, no company or no credentials.
            AlreadyDoneError: Invoice is terminal or blocked for this operation.
        """
        invoice = item.invoice
        if invoice is None:
            raise item_error(
                MissingAssociationError, "E-2001", shipment_number=item.shipment_number
            )

        self._operation.check_already_done(invoice)

        company = invoice.company
        if company is None:
            raise item_error(
                MissingAssociationError, "E-2002", invoice_number=invoice.number
            )

        if company.id not in providers:
            providers[company.id] = self._provider_factory(company)
        provider = providers[company.id]
        if provider is None:
            raise item_error(MissingAssociationError, "E-2003", company=company.name)
        return provider

    async def _process_item(
        self,
        manifest: Manifest,
        item: ManifestItem,
        actor_id: str,
        result: BatchResult,
        providers: dict[str, InvoicingProvider | None],
    ) -> None:
        result.total_processed += 1
        invoice = item.invoice
        invoice_number = invoice.number if invoice is not None else None

        try:
            provider = self._resolve_provider(item, providers)
        except AlreadyDoneError as e:
            self._record_skip(item, e)
            result.skipped_count += 1
            return
        except MissingAssociationError as e:
            self._record_failure(item, invoice_number, e.code, e.message, result)
            return
        except Exception as e:
            logger.exception("Classification failed for shipment %s", item.shipment_number)
            self._record_unexpected(item, invoice_number, e, result)
            return

        try:
            outcome = await self._operation.perform(provider, manifest, invoice)
        except ProviderError as e:
            self._record_failure(item, invoice_number, e.code, e.message, result)
            return
        except Exception as e:
            logger.exception("Provider call raised for shipment %s", item.shipment_number)
            code = "E-5001" if isinstance(e, ProviderAuthError) else "E-3003"
            self._record_failure(item, invoice_number, code, str(e) or type(e).__name__, result)
            return

        now = utc_now_iso()
        try:
            details = {
                "manifest_id": manifest.id,
                "shipment_number": item.shipment_number,
                "invoice_number": invoice.number,
                "invoice_series": invoice.series_name,
                "source": self._operation.source,
            }
            details.update(self._operation.apply(manifest, invoice, outcome, now))
            item.status = ManifestItemStatus.processed.value
            item.error_message = None
            item.processed_at = now
            audit = build_audit_entry(
                actor_id, self._operation.audit_action, "Invoice", invoice.id, details
            )
            self._repository.save_item(item, invoice, [audit])
        except Exception as e:
            # Provider already acted; the local record is now behind it
            logger.error(
                "Provider succeeded but saving shipment %s failed: %s",
                item.shipment_number, e,
            )
            self._repository.discard_changes()
            message = ReconcilerError.from_code("E-4001", details=str(e)).message
            self._record_failure(item, invoice_number, "E-4001", message, result)
            return

        result.success_count += 1
        logger.info(
            "Shipment %s: %s applied to invoice %s",
            item.shipment_number, self._operation.audit_action, invoice_number,
        )

    def _record_skip(self, item: ManifestItem, error: AlreadyDoneError) -> None:
        item.status = error.item_status
        item.error_message = error.message
        item.processed_at = utc_now_iso()
        self._repository.save_item(item)
        logger.info("Shipment %s skipped: %s", item.shipment_number, error.message)

    def _record_failure(
        self,
        item: ManifestItem,
        invoice_number: str | None,
        code: str,
        message: str,
        result: BatchResult,
    ) -> None:
        item.status = ManifestItemStatus.error.value
        item.error_message = message
        item.processed_at = utc_now_iso()
        self._repository.save_item(item)
        result.error_count += 1
        result.errors.append(
            BatchErrorEntry(
                item_id=item.id,
                shipment_number=item.shipment_number,
                invoice_number=invoice_number,
                error=message,
                code=code,
            )
        )
        logger.warning("Shipment %s failed [%s]: %s", item.shipment_number, code, message)

    def _record_unexpected(
        self,
        item: ManifestItem,
        invoice_number: str | None,
        exc: Exception,
        result: BatchResult,
    ) -> None:
        message = ReconcilerError.from_code(
            "E-4002", shipment_number=item.shipment_number, details=str(exc)
        ).message
        self._record_failure(item, invoice_number, "E-4002", message, result)

    @staticmethod
    async def _close_providers(providers: dict[str, InvoicingProvider | None]) -> None:
        for provider in providers.values():
            if provider is None:
                continue
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning("Failed to close %s client: %s", provider.provider_name, e)
