"""Service layer for the reconciler.

Provides the manifest lifecycle, the fiscal batch flows, the processing
error tracker, return linking, the manual-operation guard and audit
logging.
"""

from reconciler.services.audit_service import (
    AuditService,
    build_audit_entry,
    redact_sensitive,
)
from reconciler.services.batch_processor import (
    BatchErrorEntry,
    BatchProcessor,
    BatchResult,
    ItemOperation,
)
from reconciler.services.manifest_service import ManifestService, ManifestSummary
from reconciler.services.operation_guard import OperationCheckResult, OperationGuard
from reconciler.services.payment_collection import (
    CollectPaymentOperation,
    PaymentCollectionFlow,
)
from reconciler.services.processing_error_service import (
    OperationResult,
    ProcessingErrorService,
    RetryOutcome,
)
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.return_linker import (
    LinkResult,
    ReturnLinker,
    StockReversalResult,
)
from reconciler.services.stornare import StornareFlow, StornoOperation

__all__ = [
    "AuditService",
    "build_audit_entry",
    "redact_sensitive",
    "BatchProcessor",
    "BatchResult",
    "BatchErrorEntry",
    "ItemOperation",
    "ManifestService",
    "ManifestSummary",
    "OperationGuard",
    "OperationCheckResult",
    "StornareFlow",
    "StornoOperation",
    "PaymentCollectionFlow",
    "CollectPaymentOperation",
    "ProcessingErrorService",
    "OperationResult",
    "RetryOutcome",
    "ReturnLinker",
    "LinkResult",
    "StockReversalResult",
    "SqlAlchemyRepository",
]
