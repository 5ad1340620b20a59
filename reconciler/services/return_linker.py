"""Return linker: map a scanned return shipment to its order and restock.

Linking is recorded first; the stock reversal runs afterwards and its
failures are reported in the result message without undoing the link.
The stock ledger itself lives in the inventory subsystem and is reached
through the StockReversal protocol.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from reconciler.db.models import (
    ReturnShipment,
    ReturnStatus,
    generate_uuid,
    utc_now_iso,
)
from reconciler.errors import ConflictError, NotFoundError, ValidationError
from reconciler.services.audit_service import build_audit_entry
from reconciler.services.repository import ReturnRepository

logger = logging.getLogger(__name__)


@dataclass
class StockReversalResult:
    """Outcome reported by the inventory subsystem."""

    success: bool
    processed: int = 0
    already_processed: bool = False
    errors: list[str] = field(default_factory=list)


class StockReversal(Protocol):
    """Re-adds the stock of an order's products after a return."""

    async def reverse_for_order(self, order_id: str, return_id: str) -> StockReversalResult:
        ...


class UnconfiguredStockReversal:
    """Stand-in used when no inventory integration is wired in.

    Reports an error so the link result tells the operator to restock
    by hand.
    """

    async def reverse_for_order(self, order_id: str, return_id: str) -> StockReversalResult:
        return StockReversalResult(
            success=False,
            errors=["Stock reversal is not configured"],
        )


@dataclass
class LinkResult:
    """Outcome of linking a return shipment."""

    success: bool
    message: str
    return_id: str
    order_id: str
    already_linked: bool = False
    stock: StockReversalResult | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "return_id": self.return_id,
            "order_id": self.order_id,
            "already_linked": self.already_linked,
            "stock_processed": self.stock.processed if self.stock else 0,
        }


class ReturnLinker:
    """Links return shipments to orders and triggers the stock reversal.

    Attributes:
        _repository: Return shipment and order persistence
        _stock_reversal: Inventory hook re-adding returned stock
    """

    def __init__(self, repository: ReturnRepository, stock_reversal: StockReversal) -> None:
        self._repository = repository
        self._stock_reversal = stock_reversal

    async def link(self, return_number: str, order_id: str, actor_id: str) -> LinkResult:
        """Link a return shipment number to an order.

        Creates the return record if the shipment was never scanned. Linking
        the same pair twice is a no-op for the link; the stock reversal is
        still invoked and reports already_processed itself.

        Args:
            return_number: Courier return shipment number.
            order_id: Order the return belongs to.
            actor_id: User performing the link.

        Returns:
            LinkResult with a message describing the stock outcome.

        Raises:
            ValidationError: If the return number is blank.
            NotFoundError: If the order does not exist.
            ConflictError: If the return is already linked to another order.
        """
        number = (return_number or "").strip()
        if not number:
            raise ValidationError("Return shipment number is required")

        order = self._repository.get_order(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)

        shipment = self._repository.get_return_by_number(number)
        if shipment is None:
            shipment = ReturnShipment(
                id=generate_uuid(),
                return_number=number,
                status=ReturnStatus.received.value,
                scanned_at=utc_now_iso(),
            )

        already_linked = shipment.order_id == order_id
        if shipment.order_id and not already_linked:
            raise ConflictError(
                f"Return {number} is already linked to order {shipment.order_id}"
            )

        if not already_linked:
            shipment.order_id = order_id
            shipment.linked_by = actor_id
            shipment.linked_at = utc_now_iso()
            self._repository.save_return(
                shipment,
                [
                    build_audit_entry(
                        actor_id,
                        "return.linked",
                        "ReturnShipment",
                        shipment.id,
                        {"return_number": number, "order_id": order_id},
                    )
                ],
            )
            logger.info("Return %s linked to order %s", number, order.order_number)

        label = f"Return {number} linked to order {order.order_number}."
        try:
            stock = await self._stock_reversal.reverse_for_order(order_id, shipment.id)
        except Exception as e:
            logger.exception("Stock reversal failed for return %s", number)
            return LinkResult(
                success=True,
                message=f"{label} Stock reversal failed: {e}. Check stock manually.",
                return_id=shipment.id,
                order_id=order_id,
                already_linked=already_linked,
            )

        if stock.already_processed:
            message = f"{label} Stock was already returned."
        elif stock.success and stock.processed > 0:
            shipment.status = ReturnStatus.stock_returned.value
            self._repository.save_return(shipment)
            message = f"{label} Stock updated ({stock.processed} products)."
        elif stock.errors:
            logger.warning("Stock reversal errors for return %s: %s", number, stock.errors)
            message = f"{label} Stock was not fully updated: {'; '.join(stock.errors)}"
        else:
            message = f"{label} No stock needed updating."

        return LinkResult(
            success=True,
            message=message,
            return_id=shipment.id,
            order_id=order_id,
            already_linked=already_linked,
            stock=stock,
        )
