"""Append-only audit trail for financial mutations.

Every invoice cancellation or payment applied through a manifest, every
manifest confirmation and every manual processing-error decision leaves
one AuditLog row. Entries are built here and persisted by the caller in
the same transaction as the mutation they describe.

Usage:
    from reconciler.services.audit_service import AuditService, build_audit_entry

    entry = build_audit_entry(
        actor_id, "invoice.paid_via_manifest", "Invoice", invoice.id,
        {"manifest_id": manifest.id, "shipment_number": "AWB1"},
    )
    db.add(entry)
    db.commit()
"""

import json
from typing import Any

from sqlalchemy.orm import Session

from reconciler.db.models import AuditLog, utc_now_iso

__all__ = [
    "AuditService",
    "build_audit_entry",
    "redact_sensitive",
    "REDACT_FIELDS",
    "REDACTED",
]


# Redaction configuration

REDACT_FIELDS = {
    # Provider credentials
    "secret_token",
    "oblio_secret_token",
    "access_token",
    "refresh_token",
    "client_id",
    "client_secret",
    "api_key",
    "password",
    # Personal info
    "email",
    "phone",
    "address",
}

REDACTED = "[REDACTED]"


def redact_sensitive(
    data: dict | list | str | None, _depth: int = 0
) -> dict | list | str | None:
    """Recursively redact sensitive fields from data structures.

    Scans dictionaries for keys matching known sensitive field names
    and replaces their values with '[REDACTED]'. Handles nested structures.

    Args:
        data: The data structure to redact (dict, list, str, or None)
        _depth: Internal recursion depth counter (prevents infinite loops)

    Returns:
        A copy of the data with sensitive fields redacted.

    Example:
        >>> redact_sensitive({'client_secret': 'abc', 'manifest_id': 'm1'})
        {'client_secret': '[REDACTED]', 'manifest_id': 'm1'}
    """
    if _depth > 10:
        return REDACTED
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, list):
        return [redact_sensitive(item, _depth + 1) for item in data]
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if any(field in key_lower for field in REDACT_FIELDS):
                result[key] = REDACTED
            else:
                result[key] = redact_sensitive(value, _depth + 1)
        return result
    return data


def build_audit_entry(
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Build an unsaved audit entry with redacted, JSON-encoded details.

    Args:
        actor_id: User or system identity performing the action.
        action: Dotted action name (e.g. invoice.cancelled_via_manifest).
        entity_type: Mutated entity type (Invoice, Manifest, ProcessingError).
        entity_id: Mutated entity id.
        details: Optional structured context.

    Returns:
        AuditLog instance ready to be added to a session.
    """
    details_json: str | None = None
    if details is not None:
        details_json = json.dumps(redact_sensitive(details), default=str)

    return AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details_json,
        created_at=utc_now_iso(),
    )


class AuditService:
    """Read access to the audit trail plus standalone logging.

    The trail is append-only: entries are never updated or deleted.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Create and commit a standalone audit entry."""
        entry = build_audit_entry(actor_id, action, entity_type, entity_id, details)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def get_entries(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Query audit entries, newest first.

        Args:
            entity_type: Filter by entity type.
            entity_id: Filter by entity id.
            action: Filter by action name.
            limit: Maximum entries to return.

        Returns:
            List of AuditLog entries.
        """
        query = self.db.query(AuditLog)
        if entity_type is not None:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        return query.order_by(AuditLog.created_at.desc()).limit(limit).all()

    @staticmethod
    def parse_details(entry: AuditLog) -> dict[str, Any]:
        """Decode an entry's JSON details (empty dict when absent)."""
        if not entry.details:
            return {}
        try:
            return json.loads(entry.details)
        except json.JSONDecodeError:
            return {}
