"""Tests for linking return shipments to orders."""

from unittest.mock import AsyncMock

import pytest

from reconciler.db.models import ReturnShipment, ReturnStatus
from reconciler.errors import ConflictError, NotFoundError, ValidationError
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.return_linker import (
    ReturnLinker,
    StockReversalResult,
    UnconfiguredStockReversal,
)
from tests.helpers import make_order


@pytest.fixture
def order(repository):
    return repository.add_order(make_order(number="1042"))


@pytest.fixture
def stock():
    reversal = AsyncMock()
    reversal.reverse_for_order.return_value = StockReversalResult(success=True, processed=2)
    return reversal


class TestLink:
    async def test_links_new_return_and_restocks(self, repository, order, stock):
        result = await ReturnLinker(repository, stock).link("RET-1", order.id, "user-1")

        assert result.success is True
        assert result.already_linked is False
        assert result.message == "Return RET-1 linked to order 1042. Stock updated (2 products)."
        shipment = repository.get_return_by_number("RET-1")
        assert shipment.order_id == order.id
        assert shipment.linked_by == "user-1"
        assert shipment.status == ReturnStatus.stock_returned.value
        stock.reverse_for_order.assert_awaited_once_with(order.id, shipment.id)

    async def test_link_writes_audit_entry(self, repository, order, stock):
        await ReturnLinker(repository, stock).link("RET-1", order.id, "user-1")

        assert [e.action for e in repository.audit] == ["return.linked"]

    async def test_number_is_trimmed(self, repository, order, stock):
        await ReturnLinker(repository, stock).link("  RET-1 ", order.id, "user-1")

        assert repository.get_return_by_number("RET-1") is not None

    async def test_relink_same_order_is_idempotent(self, repository, order, stock):
        stock.reverse_for_order.side_effect = [
            StockReversalResult(success=True, processed=2),
            StockReversalResult(success=True, already_processed=True),
        ]
        linker = ReturnLinker(repository, stock)
        await linker.link("RET-1", order.id, "user-1")

        result = await linker.link("RET-1", order.id, "user-2")

        assert result.already_linked is True
        assert "already returned" in result.message
        assert repository.get_return_by_number("RET-1").linked_by == "user-1"
        assert len(repository.audit) == 1

    async def test_other_order_conflicts(self, repository, order, stock):
        other = repository.add_order(make_order(number="2000"))
        linker = ReturnLinker(repository, stock)
        await linker.link("RET-1", order.id, "user-1")

        with pytest.raises(ConflictError):
            await linker.link("RET-1", other.id, "user-1")

    async def test_existing_scanned_return_is_reused(self, repository, order, stock):
        scanned = ReturnShipment(
            id="ret-scan-1",
            return_number="RET-9",
            status=ReturnStatus.received.value,
            scanned_at="2024-03-01T08:00:00+00:00",
        )
        repository.returns["RET-9"] = scanned

        result = await ReturnLinker(repository, stock).link("RET-9", order.id, "user-1")

        assert result.return_id == "ret-scan-1"
        assert scanned.order_id == order.id

    async def test_blank_number(self, repository, order, stock):
        with pytest.raises(ValidationError):
            await ReturnLinker(repository, stock).link("   ", order.id, "user-1")

    async def test_unknown_order(self, repository, stock):
        with pytest.raises(NotFoundError):
            await ReturnLinker(repository, stock).link("RET-1", "missing", "user-1")


class TestStockOutcomes:
    """Stock problems are reported in the message; the link stays."""

    async def test_reversal_raising(self, repository, order, stock):
        stock.reverse_for_order.side_effect = RuntimeError("ledger offline")

        result = await ReturnLinker(repository, stock).link("RET-1", order.id, "user-1")

        assert result.success is True
        assert "ledger offline" in result.message
        assert "Check stock manually" in result.message
        assert repository.get_return_by_number("RET-1").order_id == order.id

    async def test_reversal_errors(self, repository, order, stock):
        stock.reverse_for_order.return_value = StockReversalResult(
            success=False, errors=["SKU-1 unknown", "SKU-2 unknown"]
        )

        result = await ReturnLinker(repository, stock).link("RET-1", order.id, "user-1")

        assert "SKU-1 unknown; SKU-2 unknown" in result.message
        shipment = repository.get_return_by_number("RET-1")
        assert shipment.status == ReturnStatus.received.value

    async def test_nothing_to_restock(self, repository, order, stock):
        stock.reverse_for_order.return_value = StockReversalResult(success=True)

        result = await ReturnLinker(repository, stock).link("RET-1", order.id, "user-1")

        assert result.message.endswith("No stock needed updating.")
        assert result.to_dict()["stock_processed"] == 0

    async def test_unconfigured_reversal(self, db_session):
        order = make_order(number="1042")
        db_session.add(order)
        db_session.commit()

        result = await ReturnLinker(
            SqlAlchemyRepository(db_session), UnconfiguredStockReversal()
        ).link("RET-1", order.id, "user-1")

        assert "Stock reversal is not configured" in result.message
        stored = db_session.query(ReturnShipment).filter_by(return_number="RET-1").one()
        assert stored.order_id == order.id
