"""In-memory implementation of the reconciler repository protocols.

Holds detached ORM objects in dicts and records every save, so tests can
assert on audit entries and simulate a lost claim or a failing save.
"""

from reconciler.db.models import (
    AuditLog,
    Invoice,
    Manifest,
    ManifestItem,
    ManifestStatus,
    Order,
    ProcessingError,
    ProcessingErrorStatus,
    ReturnShipment,
)


class InMemoryRepository:
    """Dict-backed repository.

    Attributes:
        lose_claim: When True, claim_manifest reports a concurrent winner.
        fail_save_for: Shipment numbers whose invoice save raises.
    """

    def __init__(self) -> None:
        self.manifests: dict[str, Manifest] = {}
        self.errors: dict[str, ProcessingError] = {}
        self.orders: dict[str, Order] = {}
        self.returns: dict[str, ReturnShipment] = {}
        self.audit: list[AuditLog] = []
        self.saved_items: list[ManifestItem] = []
        self.error_saves: list[str] = []
        self.released: list[str] = []
        self.discarded = 0
        self.lose_claim = False
        self.fail_save_for: set[str] = set()

    # Manifests

    def add_manifest(self, manifest: Manifest) -> Manifest:
        self.manifests[manifest.id] = manifest
        return manifest

    def get_manifest(self, manifest_id: str) -> Manifest | None:
        return self.manifests.get(manifest_id)

    def claim_manifest(self, manifest_id: str, started_at: str) -> bool:
        manifest = self.manifests.get(manifest_id)
        if self.lose_claim or manifest is None:
            return False
        if manifest.status != ManifestStatus.confirmed.value:
            return False
        manifest.status = ManifestStatus.processing.value
        manifest.processing_started_at = started_at
        return True

    def release_manifest(self, manifest_id: str) -> None:
        self.released.append(manifest_id)
        manifest = self.manifests.get(manifest_id)
        if manifest is not None and manifest.status == ManifestStatus.processing.value:
            manifest.status = ManifestStatus.confirmed.value
            manifest.processing_started_at = None

    def save_item(
        self,
        item: ManifestItem,
        invoice: Invoice | None = None,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        if invoice is not None and item.shipment_number in self.fail_save_for:
            raise RuntimeError("database is locked")
        self.saved_items.append(item)
        self.audit.extend(audit_entries or [])

    def discard_changes(self) -> None:
        self.discarded += 1

    def finish_manifest(self, manifest_id: str, processed_at: str) -> None:
        manifest = self.manifests[manifest_id]
        manifest.status = ManifestStatus.processed.value
        manifest.processed_at = processed_at

    # Processing errors

    def add_error(self, error: ProcessingError) -> ProcessingError:
        self.errors[error.id] = error
        return error

    def get_error(self, error_id: str) -> ProcessingError | None:
        return self.errors.get(error_id)

    def save_error(
        self,
        error: ProcessingError,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        self.errors[error.id] = error
        self.error_saves.append(error.status)
        self.audit.extend(audit_entries or [])

    def list_errors(
        self,
        status: ProcessingErrorStatus | None = None,
        error_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingError]:
        errors = [
            e
            for e in self.errors.values()
            if (status is None or e.status == status.value)
            and (error_type is None or e.type == error_type)
        ]
        errors.sort(key=lambda e: e.created_at, reverse=True)
        return errors[offset:offset + limit]

    def count_errors_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for error in self.errors.values():
            counts[error.status] = counts.get(error.status, 0) + 1
        return counts

    def list_retryable_errors(self) -> list[ProcessingError]:
        errors = [
            e
            for e in self.errors.values()
            if e.status == ProcessingErrorStatus.pending.value
            and e.retry_count < e.max_retries
        ]
        return sorted(errors, key=lambda e: e.created_at)

    # Returns

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    def get_order(self, order_id: str) -> Order | None:
        return self.orders.get(order_id)

    def get_return_by_number(self, return_number: str) -> ReturnShipment | None:
        return self.returns.get(return_number)

    def save_return(
        self,
        shipment: ReturnShipment,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        self.returns[shipment.return_number] = shipment
        self.audit.extend(audit_entries or [])
