"""Tests for the shared manifest batch processor."""

import asyncio
import json

import pytest

from reconciler.db.models import (
    InvoiceStatus,
    ManifestItemStatus,
    ManifestStatus,
    ManifestType,
)
from reconciler.providers.base import ProviderAuthError
from reconciler.services.batch_processor import BatchProcessor, BatchResult
from reconciler.services.stornare import StornoOperation
from tests.helpers import (
    FakeProvider,
    make_company,
    make_invoice,
    make_item,
    make_manifest,
)


def _assert_counts_add_up(result: BatchResult) -> None:
    assert (
        result.success_count + result.error_count + result.skipped_count
        == result.total_processed
    )


@pytest.fixture
def company():
    return make_company()


@pytest.fixture
def processor(repository, provider):
    return BatchProcessor(repository, lambda company: provider, StornoOperation())


class TestMixedManifest:
    """One success, one already-done, one missing invoice."""

    @pytest.fixture
    def manifest(self, repository, company):
        manifest = make_manifest(
            items=[
                make_item("AWB001", make_invoice("101", company)),
                make_item(
                    "AWB002",
                    make_invoice("102", company, status=InvoiceStatus.cancelled),
                ),
                make_item("AWB003"),
            ]
        )
        return repository.add_manifest(manifest)

    async def test_counts(self, processor, manifest):
        """Each item lands in exactly one bucket."""
        result = await processor.run(manifest.id, "user-1")

        assert result.success is True
        assert result.total_processed == 3
        assert result.success_count == 1
        assert result.skipped_count == 1
        assert result.error_count == 1
        _assert_counts_add_up(result)

    async def test_error_entry_for_missing_invoice(self, processor, manifest):
        result = await processor.run(manifest.id, "user-1")

        assert len(result.errors) == 1
        entry = result.errors[0]
        assert entry.shipment_number == "AWB003"
        assert entry.invoice_number is None
        assert entry.code == "E-2001"
        assert "AWB003" in entry.error

    async def test_item_statuses(self, processor, manifest):
        await processor.run(manifest.id, "user-1")

        by_shipment = {i.shipment_number: i for i in manifest.items}
        assert by_shipment["AWB001"].status == ManifestItemStatus.processed.value
        assert by_shipment["AWB001"].error_message is None
        # Already cancelled is a no-op, recorded as processed with a note
        assert by_shipment["AWB002"].status == ManifestItemStatus.processed.value
        assert "already cancelled" in by_shipment["AWB002"].error_message
        assert by_shipment["AWB003"].status == ManifestItemStatus.error.value
        assert all(i.processed_at for i in manifest.items)

    async def test_only_actionable_invoice_hits_provider(self, processor, manifest, provider):
        await processor.run(manifest.id, "user-1")

        assert provider.cancel_calls == [("FCT", "101")]

    async def test_manifest_processed(self, processor, manifest):
        await processor.run(manifest.id, "user-1")

        assert manifest.status == ManifestStatus.processed.value
        assert manifest.processing_started_at is not None
        assert manifest.processed_at is not None

    async def test_one_audit_entry_per_success(self, processor, manifest, repository):
        await processor.run(manifest.id, "user-1")

        assert len(repository.audit) == 1
        entry = repository.audit[0]
        assert entry.action == "invoice.cancelled_via_manifest"
        assert entry.entity_type == "Invoice"
        assert entry.actor_id == "user-1"
        details = json.loads(entry.details)
        assert details["manifest_id"] == manifest.id
        assert details["shipment_number"] == "AWB001"
        assert details["invoice_number"] == "101"
        assert details["source"] == "manifest_return"
        assert details["storno_number"] == "9001"


class TestProviderFailures:
    """Provider failures are recorded per item and never stop the run."""

    async def test_rejected_call_is_item_error(self, repository, company):
        provider = FakeProvider(failures={"201": "Factura nu exista"})
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB001", make_invoice("201", company)),
                    make_item("AWB002", make_invoice("202", company)),
                ]
            )
        )
        processor = BatchProcessor(repository, lambda c: provider, StornoOperation())

        result = await processor.run(manifest.id, "user-1")

        assert result.success is True
        assert result.success_count == 1
        assert result.error_count == 1
        assert result.errors[0].code == "E-3002"
        assert result.errors[0].error == "Factura nu exista"
        assert result.errors[0].invoice_number == "201"
        assert manifest.status == ManifestStatus.processed.value
        _assert_counts_add_up(result)

    async def test_raising_provider_is_item_error(self, repository, company):
        provider = FakeProvider(raises={"301": RuntimeError("connection reset")})
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", make_invoice("301", company))])
        )
        processor = BatchProcessor(repository, lambda c: provider, StornoOperation())

        result = await processor.run(manifest.id, "user-1")

        assert result.success is False
        assert result.error_count == 1
        assert result.errors[0].code == "E-3003"
        assert "connection reset" in result.errors[0].error
        assert manifest.status == ManifestStatus.processed.value
        assert repository.audit == []

    async def test_auth_failure_code(self, repository, company):
        provider = FakeProvider(raises={"401": ProviderAuthError("invalid token")})
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", make_invoice("401", company))])
        )
        processor = BatchProcessor(repository, lambda c: provider, StornoOperation())

        result = await processor.run(manifest.id, "user-1")

        assert result.errors[0].code == "E-5001"

    async def test_invoice_untouched_on_failure(self, repository, company):
        provider = FakeProvider(failures={"501": "nope"})
        invoice = make_invoice("501", company)
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", invoice)])
        )
        processor = BatchProcessor(repository, lambda c: provider, StornoOperation())

        await processor.run(manifest.id, "user-1")

        assert invoice.status == InvoiceStatus.issued.value
        assert invoice.cancelled_at is None


class TestPreconditions:
    """Precondition failures return one synthetic error and touch nothing."""

    async def test_draft_manifest_rejected(self, processor, repository, provider, company):
        manifest = repository.add_manifest(
            make_manifest(
                status=ManifestStatus.draft,
                items=[make_item("AWB001", make_invoice("101", company))],
            )
        )

        result = await processor.run(manifest.id, "user-1")

        assert result.success is False
        assert result.total_processed == 0
        assert len(result.errors) == 1
        assert result.errors[0].code == "E-1002"
        assert "draft" in result.errors[0].error
        assert manifest.status == ManifestStatus.draft.value
        assert manifest.items[0].status == ManifestItemStatus.pending.value
        assert provider.cancel_calls == []

    async def test_missing_manifest(self, processor):
        result = await processor.run("no-such-manifest", "user-1")

        assert result.errors[0].code == "E-1001"
        assert result.errors[0].item_id == ""

    async def test_wrong_type(self, processor, repository):
        manifest = repository.add_manifest(make_manifest(ManifestType.delivery))

        result = await processor.run(manifest.id, "user-1")

        assert result.errors[0].code == "E-1003"
        assert manifest.status == ManifestStatus.confirmed.value

    async def test_processed_manifest_not_reprocessed(self, processor, repository):
        manifest = repository.add_manifest(make_manifest(status=ManifestStatus.processed))

        result = await processor.run(manifest.id, "user-1")

        assert result.errors[0].code == "E-1002"

    async def test_lost_claim(self, processor, repository, provider, company):
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", make_invoice("101", company))])
        )
        repository.lose_claim = True

        result = await processor.run(manifest.id, "user-1")

        assert result.errors[0].code == "E-1004"
        assert provider.cancel_calls == []


class TestAssociations:
    async def test_invoice_without_company(self, processor, repository):
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", make_invoice("101"))])
        )

        result = await processor.run(manifest.id, "user-1")

        assert result.errors[0].code == "E-2002"
        assert result.errors[0].invoice_number == "101"

    async def test_company_without_credentials(self, repository):
        company = make_company(with_credentials=False)
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB001", make_invoice("101", company)),
                    make_item("AWB002", make_invoice("102", company)),
                ]
            )
        )
        calls = []

        def factory(c):
            calls.append(c.id)
            return None

        result = await BatchProcessor(repository, factory, StornoOperation()).run(
            manifest.id, "user-1"
        )

        assert [e.code for e in result.errors] == ["E-2003", "E-2003"]
        assert company.name in result.errors[0].error
        # Resolved once per company, not per item
        assert calls == [company.id]

    async def test_one_client_per_company_closed_after_run(self, repository):
        first, second = make_company("A SRL"), make_company("B SRL")
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB001", make_invoice("101", first)),
                    make_item("AWB002", make_invoice("102", second)),
                    make_item("AWB003", make_invoice("103", first)),
                ]
            )
        )
        clients = {}

        def factory(c):
            clients[c.id] = FakeProvider()
            return clients[c.id]

        result = await BatchProcessor(repository, factory, StornoOperation()).run(
            manifest.id, "user-1"
        )

        assert result.success_count == 3
        assert len(clients) == 2
        assert [n for _, n in clients[first.id].cancel_calls] == ["101", "103"]
        assert all(c.closed for c in clients.values())


class TestOrderingAndProgress:
    async def test_items_processed_in_shipment_order(self, processor, repository, provider, company):
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB300", make_invoice("3", company)),
                    make_item("AWB100", make_invoice("1", company)),
                    make_item("AWB200", make_invoice("2", company)),
                ]
            )
        )

        await processor.run(manifest.id, "user-1")

        assert [n for _, n in provider.cancel_calls] == ["1", "2", "3"]

    async def test_progress_callback_per_item(self, processor, repository, company):
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB001", make_invoice("101", company)),
                    make_item("AWB002"),
                ]
            )
        )
        events = []

        async def on_progress(event, **data):
            events.append((event, data["shipment_number"], data["status"]))

        await processor.run(manifest.id, "user-1", on_progress=on_progress)

        assert events == [
            ("item_processed", "AWB001", ManifestItemStatus.processed.value),
            ("item_processed", "AWB002", ManifestItemStatus.error.value),
        ]


class TestAbortedRun:
    async def test_cancelled_run_releases_claim(self, repository, company):
        provider = FakeProvider(raises={"101": asyncio.CancelledError()})
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", make_invoice("101", company))])
        )

        with pytest.raises(asyncio.CancelledError):
            await BatchProcessor(
                repository, lambda c: provider, StornoOperation()
            ).run(manifest.id, "user-1")

        assert repository.released == [manifest.id]
        assert manifest.status == ManifestStatus.confirmed.value
        assert provider.closed is True

    async def test_progress_callback_failure_does_not_stop_run(
        self, processor, repository, provider, company
    ):
        manifest = repository.add_manifest(
            make_manifest(
                items=[
                    make_item("AWB001", make_invoice("101", company)),
                    make_item("AWB002", make_invoice("102", company)),
                ]
            )
        )

        async def on_progress(event, **data):
            raise RuntimeError("progress sink gone")

        result = await processor.run(manifest.id, "user-1", on_progress=on_progress)

        assert result.success_count == 2
        assert repository.released == []
        assert manifest.status == ManifestStatus.processed.value
        assert [i.status for i in manifest.items] == [
            ManifestItemStatus.processed.value,
            ManifestItemStatus.processed.value,
        ]

    async def test_save_failure_after_provider_success(self, repository, provider, company):
        invoice = make_invoice("101", company)
        manifest = repository.add_manifest(
            make_manifest(items=[make_item("AWB001", invoice)])
        )
        repository.fail_save_for = {"AWB001"}

        result = await BatchProcessor(
            repository, lambda c: provider, StornoOperation()
        ).run(manifest.id, "user-1")

        assert result.error_count == 1
        assert result.errors[0].code == "E-4001"
        assert "database is locked" in result.errors[0].error
        assert repository.discarded == 1
        assert manifest.items[0].status == ManifestItemStatus.error.value
        assert manifest.status == ManifestStatus.processed.value
