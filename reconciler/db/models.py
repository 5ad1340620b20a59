"""SQLAlchemy ORM models for the reconciler state database.

This module defines the manifest batches driven through the fiscal flows,
the invoices they settle or cancel, processing errors raised by order
processing, scanned return shipments and the append-only audit log.
Uses SQLAlchemy 2.0 style with Mapped and mapped_column.

Orders and companies are owned by the order/billing subsystem; they are
mapped here read-only so the flows can resolve paid amounts and provider
credentials.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


# Enums matching the database schema constraints


class ManifestType(str, Enum):
    """Kind of fiscal operation a manifest drives."""

    return_ = "return"
    delivery = "delivery"


class ManifestStatus(str, Enum):
    """Status values for courier manifests.

    Lifecycle: draft -> (pending_verification) -> confirmed -> processing -> processed
    """

    draft = "draft"
    pending_verification = "pending_verification"
    confirmed = "confirmed"
    processing = "processing"
    processed = "processed"


class ManifestItemStatus(str, Enum):
    """Status values for individual shipments within a manifest."""

    pending = "pending"
    processed = "processed"
    error = "error"


class InvoiceStatus(str, Enum):
    """Document status of an invoice. cancelled is terminal."""

    issued = "issued"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    """Payment status of an invoice. paid is terminal."""

    unpaid = "unpaid"
    paid = "paid"


class PaymentSource(str, Enum):
    """Where a payment confirmation originated."""

    manual = "manual"
    manifest_delivery = "manifest_delivery"


class CancellationSource(str, Enum):
    """Where an invoice cancellation originated."""

    manual = "manual"
    manifest_return = "manifest_return"


class ProcessingErrorType(str, Enum):
    """Order processing step that failed."""

    invoice = "invoice"
    shipping_label = "shipping_label"


class ProcessingErrorStatus(str, Enum):
    """Status values for processing errors.

    Lifecycle: pending -> retrying -> resolved | pending | failed
               pending/retrying/failed -> skipped (manual)
    """

    pending = "pending"
    retrying = "retrying"
    resolved = "resolved"
    failed = "failed"
    skipped = "skipped"


class Resolution(str, Enum):
    """How a processing error left the active set."""

    success = "success"
    skipped = "skipped"


class ReturnStatus(str, Enum):
    """Status values for scanned return shipments."""

    received = "received"
    stock_returned = "stock_returned"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models owned by the order/billing subsystem


class Company(Base):
    """Issuing company with its invoicing provider credentials."""

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cif: Mapped[str | None] = mapped_column(String(32), nullable=True)

    # Invoicing provider credentials
    oblio_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    oblio_secret_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    oblio_cif: Mapped[str | None] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return f"<Company(id={self.id!r}, name={self.name!r})>"


class Order(Base):
    """Sales order. Only the fields the fiscal flows read are mapped."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    order_number: Mapped[str] = mapped_column(String(64), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id!r}, number={self.order_number!r})>"


class Invoice(Base):
    """Fiscal invoice issued through the invoicing provider.

    status and payment_status are one-way flags: once cancelled or paid
    they never revert. paid_from_manifest_id and cancelled_from_manifest_id
    are plain id columns kept for audit traceability; they are not
    relationships and do not imply ownership.

    Attributes:
        id: UUID primary key
        order_id: Order the invoice was issued for
        company_id: Issuing company (provider credentials)
        series_name: Provider invoice series
        number: Provider invoice number
        status: issued or cancelled
        payment_status: unpaid or paid
        paid_amount: Amount recorded when marked paid
        paid_at: ISO8601 payment timestamp
        storno_number: Number of the reversal document issued on cancel
        storno_series: Series of the reversal document issued on cancel
    """

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    order_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=True
    )
    company_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=True
    )
    series_name: Mapped[str | None] = mapped_column(String(32), nullable=True)
    number: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.issued.value
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.unpaid.value
    )

    # Payment
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    paid_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_source: Mapped[str | None] = mapped_column(String(30), nullable=True)
    paid_from_manifest_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Cancellation
    cancelled_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_source: Mapped[str | None] = mapped_column(String(30), nullable=True)
    cancelled_from_manifest_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True
    )
    storno_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    storno_series: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    company: Mapped["Company | None"] = relationship("Company")
    order: Mapped["Order | None"] = relationship("Order")

    __table_args__ = (
        Index("idx_invoices_order_id", "order_id"),
        Index("idx_invoices_series_number", "series_name", "number"),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.cancelled.value or self.cancelled_at is not None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.paid.value or self.paid_at is not None

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id!r}, series={self.series_name!r}, "
            f"number={self.number!r}, status={self.status!r})>"
        )


# Models owned by the reconciler


class Manifest(Base):
    """Courier manifest grouping shipments for one fiscal operation.

    Attributes:
        id: UUID primary key
        type: return (cancel invoices) or delivery (mark invoices paid)
        status: Current manifest status
        document_date: Courier document date (YYYY-MM-DD), used as payment date
        confirmed_at: ISO8601 timestamp of confirmation
        confirmed_by: Actor that confirmed the manifest
        processing_started_at: ISO8601 timestamp of the processing claim
        processed_at: ISO8601 timestamp when processing finished
    """

    __tablename__ = "manifests"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ManifestStatus.draft.value
    )
    document_date: Mapped[str] = mapped_column(String(10), nullable=False)

    confirmed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confirmed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    processing_started_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    processed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    items: Mapped[list["ManifestItem"]] = relationship(
        "ManifestItem",
        back_populates="manifest",
        cascade="all, delete-orphan",
        order_by="ManifestItem.shipment_number",
    )

    __table_args__ = (
        Index("idx_manifests_status", "status"),
        Index("idx_manifests_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<Manifest(id={self.id!r}, type={self.type!r}, status={self.status!r})>"


class ManifestItem(Base):
    """One shipment entry inside a manifest.

    Attributes:
        id: UUID primary key
        manifest_id: Owning manifest
        shipment_number: Courier shipment (AWB) number
        original_shipment_number: Outbound shipment number for returns
        order_id: Order the shipment belongs to, when known
        invoice_id: Linked invoice, when known
        status: pending, processed or error
        error_message: Failure or no-op note
        processed_at: ISO8601 timestamp when the item was settled
    """

    __tablename__ = "manifest_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    manifest_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("manifests.id", ondelete="CASCADE"), nullable=False
    )
    shipment_number: Mapped[str] = mapped_column(String(64), nullable=False)
    original_shipment_number: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    order_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=True
    )
    invoice_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("invoices.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ManifestItemStatus.pending.value
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    manifest: Mapped["Manifest"] = relationship("Manifest", back_populates="items")
    invoice: Mapped["Invoice | None"] = relationship("Invoice")

    __table_args__ = (
        Index("idx_manifest_items_manifest_id", "manifest_id"),
        Index("idx_manifest_items_invoice_id", "invoice_id"),
        Index("idx_manifest_items_shipment", "shipment_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<ManifestItem(id={self.id!r}, shipment={self.shipment_number!r}, "
            f"status={self.status!r})>"
        )


class ProcessingError(Base):
    """Failed invoice or shipping-label creation awaiting retry or skip.

    retry_count never exceeds max_retries; reaching the limit moves the
    error to failed, which only an explicit skip leaves.
    """

    __tablename__ = "processing_errors"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProcessingErrorStatus.pending.value
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False)

    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default="3"
    )
    last_retry_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    resolved_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_processing_errors_status", "status"),
        Index("idx_processing_errors_type", "type"),
        Index("idx_processing_errors_order", "order_id"),
    )

    @property
    def retries_left(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    def __repr__(self) -> str:
        return (
            f"<ProcessingError(id={self.id!r}, type={self.type!r}, "
            f"status={self.status!r}, retries={self.retry_count}/{self.max_retries})>"
        )


class ReturnShipment(Base):
    """Scanned return shipment and the order it was mapped to."""

    __tablename__ = "return_shipments"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    return_number: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    order_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReturnStatus.received.value
    )
    linked_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    linked_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    scanned_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return (
            f"<ReturnShipment(id={self.id!r}, number={self.return_number!r}, "
            f"order_id={self.order_id!r})>"
        )


class AuditLog(Base):
    """Append-only record of every financial mutation.

    Attributes:
        id: UUID primary key
        actor_id: User or system identity that performed the action
        action: Dotted action name (e.g. invoice.cancelled_via_manifest)
        entity_type: Type of the mutated entity (Invoice, Manifest, ...)
        entity_id: Id of the mutated entity
        details: JSON blob with manifest, shipment and invoice context
        created_at: ISO8601 timestamp of the event
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_audit_logs_entity", "entity_type", "entity_id"),
        Index("idx_audit_logs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id!r}, action={self.action!r}, entity={self.entity_id!r})>"
