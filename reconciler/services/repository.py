"""Persistence seam for the batch processor, error tracker and return linker.

The services depend on the protocols below rather than on a Session, so
the batch logic can run against an in-memory store. SqlAlchemyRepository
is the production implementation.

Each save_* method is one transaction: the entity mutation and its audit
entries are committed together or not at all.
"""

import logging
from typing import Protocol

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

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

logger = logging.getLogger(__name__)


class ManifestRepository(Protocol):
    """Storage operations needed to drive a manifest through a flow."""

    def get_manifest(self, manifest_id: str) -> Manifest | None:
        """Load a manifest with items, invoices, companies and orders."""
        ...

    def claim_manifest(self, manifest_id: str, started_at: str) -> bool:
        """Atomically move a confirmed manifest to processing.

        Returns:
            True if this caller won the claim.
        """
        ...

    def release_manifest(self, manifest_id: str) -> None:
        """Return a claimed manifest to confirmed."""
        ...

    def save_item(
        self,
        item: ManifestItem,
        invoice: Invoice | None = None,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        """Persist one item outcome, its invoice changes and audit entries."""
        ...

    def discard_changes(self) -> None:
        """Drop uncommitted changes after a failed save."""
        ...

    def finish_manifest(self, manifest_id: str, processed_at: str) -> None:
        """Mark a manifest processed."""
        ...


class ProcessingErrorRepository(Protocol):
    """Storage operations for the processing error tracker."""

    def add_error(self, error: ProcessingError) -> ProcessingError:
        ...

    def get_error(self, error_id: str) -> ProcessingError | None:
        ...

    def save_error(
        self,
        error: ProcessingError,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        ...

    def list_errors(
        self,
        status: ProcessingErrorStatus | None = None,
        error_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingError]:
        ...

    def count_errors_by_status(self) -> dict[str, int]:
        ...

    def list_retryable_errors(self) -> list[ProcessingError]:
        """Pending errors with retries left, oldest first."""
        ...


class ReturnRepository(Protocol):
    """Storage operations for linking return shipments to orders."""

    def get_order(self, order_id: str) -> Order | None:
        ...

    def get_return_by_number(self, return_number: str) -> ReturnShipment | None:
        ...

    def save_return(
        self,
        shipment: ReturnShipment,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        ...


class SqlAlchemyRepository:
    """SQLAlchemy implementation of all reconciler repository protocols.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # =========================================================================
    # Manifests
    # =========================================================================

    def get_manifest(self, manifest_id: str) -> Manifest | None:
        return (
            self.db.query(Manifest)
            .options(
                selectinload(Manifest.items)
                .joinedload(ManifestItem.invoice)
                .options(joinedload(Invoice.company), joinedload(Invoice.order))
            )
            .filter(Manifest.id == manifest_id)
            .first()
        )

    def claim_manifest(self, manifest_id: str, started_at: str) -> bool:
        result = self.db.execute(
            update(Manifest)
            .where(
                Manifest.id == manifest_id,
                Manifest.status == ManifestStatus.confirmed.value,
            )
            .values(
                status=ManifestStatus.processing.value,
                processing_started_at=started_at,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        return result.rowcount == 1

    def release_manifest(self, manifest_id: str) -> None:
        self.db.rollback()
        self.db.execute(
            update(Manifest)
            .where(
                Manifest.id == manifest_id,
                Manifest.status == ManifestStatus.processing.value,
            )
            .values(
                status=ManifestStatus.confirmed.value,
                processing_started_at=None,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()

    def save_item(
        self,
        item: ManifestItem,
        invoice: Invoice | None = None,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        self.db.add(item)
        if invoice is not None:
            self.db.add(invoice)
        for entry in audit_entries or []:
            self.db.add(entry)
        self.db.commit()

    def discard_changes(self) -> None:
        self.db.rollback()

    def finish_manifest(self, manifest_id: str, processed_at: str) -> None:
        manifest = self.db.get(Manifest, manifest_id)
        if manifest is None:
            logger.warning("Manifest %s vanished before it could be finished", manifest_id)
            return
        manifest.status = ManifestStatus.processed.value
        manifest.processed_at = processed_at
        self.db.commit()

    # =========================================================================
    # Processing errors
    # =========================================================================

    def add_error(self, error: ProcessingError) -> ProcessingError:
        self.db.add(error)
        self.db.commit()
        self.db.refresh(error)
        return error

    def get_error(self, error_id: str) -> ProcessingError | None:
        return self.db.get(ProcessingError, error_id)

    def save_error(
        self,
        error: ProcessingError,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        self.db.add(error)
        for entry in audit_entries or []:
            self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def list_errors(
        self,
        status: ProcessingErrorStatus | None = None,
        error_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingError]:
        query = self.db.query(ProcessingError)
        if status is not None:
            query = query.filter(ProcessingError.status == status.value)
        if error_type is not None:
            query = query.filter(ProcessingError.type == error_type)
        query = query.order_by(ProcessingError.created_at.desc())
        return query.limit(limit).offset(offset).all()

    def count_errors_by_status(self) -> dict[str, int]:
        rows = (
            self.db.query(ProcessingError.status, func.count(ProcessingError.id))
            .group_by(ProcessingError.status)
            .all()
        )
        return {status: count for status, count in rows}

    def list_retryable_errors(self) -> list[ProcessingError]:
        return (
            self.db.query(ProcessingError)
            .filter(
                ProcessingError.status == ProcessingErrorStatus.pending.value,
                ProcessingError.retry_count < ProcessingError.max_retries,
            )
            .order_by(ProcessingError.created_at.asc())
            .all()
        )

    # =========================================================================
    # Returns
    # =========================================================================

    def get_order(self, order_id: str) -> Order | None:
        return self.db.get(Order, order_id)

    def get_return_by_number(self, return_number: str) -> ReturnShipment | None:
        return (
            self.db.query(ReturnShipment)
            .filter(ReturnShipment.return_number == return_number)
            .first()
        )

    def save_return(
        self,
        shipment: ReturnShipment,
        audit_entries: list[AuditLog] | None = None,
    ) -> None:
        self.db.add(shipment)
        for entry in audit_entries or []:
            self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
