"""Guard for manual invoice operations.

A manual cancel or mark-paid is only allowed for an invoice that appears
on a confirmed (or later) manifest of the matching type, so every fiscal
action can be traced back to a courier manifest.
"""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from reconciler.db.models import Manifest, ManifestItem, ManifestStatus, ManifestType

# Manifest statuses that authorize the matching manual operation
AUTHORIZING_STATUSES = (
    ManifestStatus.confirmed.value,
    ManifestStatus.processing.value,
    ManifestStatus.processed.value,
)


@dataclass
class OperationCheckResult:
    allowed: bool
    reason: str | None = None
    manifest_id: str | None = None
    manifest_type: ManifestType | None = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "manifest_id": self.manifest_id,
            "manifest_type": self.manifest_type.value if self.manifest_type else None,
        }


class OperationGuard:
    """Checks whether an invoice may be cancelled or marked paid by hand."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _find_manifest_item(
        self, invoice_id: str, manifest_type: ManifestType
    ) -> ManifestItem | None:
        return (
            self.db.query(ManifestItem)
            .join(Manifest, ManifestItem.manifest_id == Manifest.id)
            .filter(
                ManifestItem.invoice_id == invoice_id,
                Manifest.type == manifest_type.value,
                Manifest.status.in_(AUTHORIZING_STATUSES),
            )
            .order_by(Manifest.created_at.desc())
            .first()
        )

    def _check(self, invoice_id: str, manifest_type: ManifestType, reason: str) -> OperationCheckResult:
        item = self._find_manifest_item(invoice_id, manifest_type)
        if item is None:
            return OperationCheckResult(allowed=False, reason=reason)
        return OperationCheckResult(
            allowed=True, manifest_id=item.manifest_id, manifest_type=manifest_type
        )

    def can_cancel_invoice(self, invoice_id: str) -> OperationCheckResult:
        return self._check(
            invoice_id,
            ManifestType.return_,
            "Invoice is not on a confirmed return manifest",
        )

    def can_mark_invoice_paid(self, invoice_id: str) -> OperationCheckResult:
        return self._check(
            invoice_id,
            ManifestType.delivery,
            "Invoice is not on a confirmed delivery manifest",
        )
