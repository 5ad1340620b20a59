"""Tests for the stornare (return manifest) flow against SQLite."""

import json

import pytest

from reconciler.db.models import (
    AuditLog,
    CancellationSource,
    InvoiceStatus,
    ManifestItemStatus,
    ManifestStatus,
    ManifestType,
)
from reconciler.errors import AlreadyDoneError, ProviderError
from reconciler.providers.base import CancelResult
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.stornare import StornareFlow, StornoOperation
from tests.helpers import FakeProvider, make_company, make_invoice, make_item, make_manifest


@pytest.fixture
def company(db_session):
    company = make_company()
    db_session.add(company)
    db_session.commit()
    return company


def _flow(db_session, provider, config):
    return StornareFlow(SqlAlchemyRepository(db_session), lambda c: provider, config)


class TestStornoOperation:
    def test_already_cancelled_is_processed_noop(self):
        invoice = make_invoice("101", status=InvoiceStatus.cancelled)

        with pytest.raises(AlreadyDoneError) as exc_info:
            StornoOperation().check_already_done(invoice)

        assert exc_info.value.code == "E-2005"
        assert exc_info.value.item_status == ManifestItemStatus.processed.value

    def test_issued_invoice_passes(self):
        StornoOperation().check_already_done(make_invoice("101"))

    async def test_failed_cancel_raises_provider_error(self):
        provider = FakeProvider(failures={"101": "Documentul nu poate fi anulat"})

        with pytest.raises(ProviderError) as exc_info:
            await StornoOperation().perform(
                provider, make_manifest(), make_invoice("101")
            )

        assert exc_info.value.code == "E-3002"
        assert exc_info.value.message == "Documentul nu poate fi anulat"

    def test_apply_sets_cancellation_fields(self):
        manifest = make_manifest()
        invoice = make_invoice("101")
        outcome = CancelResult(
            success=True, cancelled_invoice_number="77", cancelled_invoice_series="ST"
        )

        extras = StornoOperation().apply(manifest, invoice, outcome, "2024-03-02T10:00:00+00:00")

        assert invoice.status == InvoiceStatus.cancelled.value
        assert invoice.cancelled_at == "2024-03-02T10:00:00+00:00"
        assert invoice.cancellation_source == CancellationSource.manifest_return.value
        assert invoice.cancelled_from_manifest_id == manifest.id
        assert invoice.cancel_reason == f"Return manifest {manifest.id}"
        assert invoice.storno_number == "77"
        assert invoice.storno_series == "ST"
        assert extras == {"storno_number": "77", "storno_series": "ST"}


class TestStornareFlow:
    async def test_cancels_every_invoice(self, db_session, company, config):
        provider = FakeProvider()
        manifest = make_manifest(
            items=[
                make_item("AWB001", make_invoice("101", company)),
                make_item("AWB002", make_invoice("102", company)),
            ]
        )
        db_session.add(manifest)
        db_session.commit()

        result = await _flow(db_session, provider, config).process(manifest.id, "user-1")

        assert result.success is True
        assert result.success_count == 2
        db_session.expire_all()
        assert manifest.status == ManifestStatus.processed.value
        for item in manifest.items:
            assert item.status == ManifestItemStatus.processed.value
            assert item.invoice.status == InvoiceStatus.cancelled.value
            assert item.invoice.cancelled_from_manifest_id == manifest.id
            assert item.invoice.storno_series == "STORNO"

    async def test_audit_rows_committed(self, db_session, company, config):
        manifest = make_manifest(items=[make_item("AWB001", make_invoice("101", company))])
        db_session.add(manifest)
        db_session.commit()

        await _flow(db_session, FakeProvider(), config).process(manifest.id, "user-1")

        entries = (
            db_session.query(AuditLog)
            .filter(AuditLog.action == "invoice.cancelled_via_manifest")
            .all()
        )
        assert len(entries) == 1
        details = json.loads(entries[0].details)
        assert details["shipment_number"] == "AWB001"
        assert details["storno_number"] == "9001"

    async def test_second_run_rejected(self, db_session, company, config):
        manifest = make_manifest(items=[make_item("AWB001", make_invoice("101", company))])
        db_session.add(manifest)
        db_session.commit()
        provider = FakeProvider()
        flow = _flow(db_session, provider, config)

        await flow.process(manifest.id, "user-1")
        again = await flow.process(manifest.id, "user-1")

        assert again.errors[0].code == "E-1002"
        assert len(provider.cancel_calls) == 1

    async def test_invoice_on_two_manifests_cancelled_once(self, db_session, company, config):
        invoice = make_invoice("101", company)
        first = make_manifest(items=[make_item("AWB001", invoice)])
        db_session.add(first)
        db_session.commit()
        provider = FakeProvider()
        flow = _flow(db_session, provider, config)
        await flow.process(first.id, "user-1")

        second = make_manifest(items=[make_item("AWB001-R", invoice)])
        db_session.add(second)
        db_session.commit()
        result = await flow.process(second.id, "user-1")

        assert result.skipped_count == 1
        assert result.success is False
        assert len(provider.cancel_calls) == 1
        db_session.refresh(invoice)
        assert invoice.cancelled_from_manifest_id == first.id

    async def test_delivery_manifest_rejected(self, db_session, config):
        manifest = make_manifest(ManifestType.delivery)
        db_session.add(manifest)
        db_session.commit()

        result = await _flow(db_session, FakeProvider(), config).process(manifest.id, "user-1")

        assert result.errors[0].code == "E-1003"

    async def test_default_factory_requires_credentials(self, db_session, config):
        company = make_company(with_credentials=False)
        manifest = make_manifest(items=[make_item("AWB001", make_invoice("101", company))])
        db_session.add(manifest)
        db_session.commit()

        flow = StornareFlow(SqlAlchemyRepository(db_session), config=config)
        result = await flow.process(manifest.id, "user-1")

        assert result.errors[0].code == "E-2003"
        db_session.expire_all()
        assert manifest.items[0].status == ManifestItemStatus.error.value
