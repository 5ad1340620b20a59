"""Tests for audit entry building and querying."""

import json

from reconciler.services.audit_service import (
    REDACTED,
    AuditService,
    build_audit_entry,
    redact_sensitive,
)


class TestRedaction:
    def test_redacts_nested_credentials(self):
        data = {
            "manifest_id": "m1",
            "company": {"oblio_secret_token": "abc", "name": "A SRL"},
            "contacts": [{"email": "x@y.ro"}],
        }

        redacted = redact_sensitive(data)

        assert redacted["manifest_id"] == "m1"
        assert redacted["company"]["oblio_secret_token"] == REDACTED
        assert redacted["company"]["name"] == "A SRL"
        assert redacted["contacts"][0]["email"] == REDACTED
        assert data["company"]["oblio_secret_token"] == "abc"


class TestBuildAuditEntry:
    def test_details_json_encoded(self):
        entry = build_audit_entry(
            "user-1", "invoice.paid_via_manifest", "Invoice", "inv-1", {"paid_amount": 10}
        )

        assert entry.actor_id == "user-1"
        assert json.loads(entry.details) == {"paid_amount": 10}
        assert entry.created_at

    def test_no_details(self):
        assert build_audit_entry("u", "a", "Invoice", "i").details is None


class TestAuditService:
    def test_log_and_query(self, db_session):
        svc = AuditService(db_session)
        svc.log("user-1", "manifest.confirmed", "Manifest", "m1", {"type": "return"})
        svc.log("user-1", "invoice.cancelled_via_manifest", "Invoice", "i1")

        entries = svc.get_entries(entity_type="Manifest")

        assert len(entries) == 1
        assert AuditService.parse_details(entries[0]) == {"type": "return"}
        assert AuditService.parse_details(svc.get_entries(entity_id="i1")[0]) == {}
