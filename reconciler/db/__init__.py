"""Database module for reconciler state management and persistence."""

from reconciler.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from reconciler.db.models import (
    AuditLog,
    CancellationSource,
    Company,
    Invoice,
    InvoiceStatus,
    Manifest,
    ManifestItem,
    ManifestItemStatus,
    ManifestStatus,
    ManifestType,
    Order,
    PaymentSource,
    PaymentStatus,
    ProcessingError,
    ProcessingErrorStatus,
    ProcessingErrorType,
    Resolution,
    ReturnShipment,
    ReturnStatus,
)

__all__ = [
    # Models
    "Manifest",
    "ManifestItem",
    "Invoice",
    "Order",
    "Company",
    "ProcessingError",
    "ReturnShipment",
    "AuditLog",
    # Enums
    "ManifestType",
    "ManifestStatus",
    "ManifestItemStatus",
    "InvoiceStatus",
    "PaymentStatus",
    "PaymentSource",
    "CancellationSource",
    "ProcessingErrorType",
    "ProcessingErrorStatus",
    "Resolution",
    "ReturnStatus",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
