"""FastAPI routes for return shipments."""

from fastapi import APIRouter, Depends

from reconciler.api.dependencies import get_actor_id, get_repository, get_stock_reversal
from reconciler.api.schemas import LinkReturnRequest, LinkReturnResponse
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.return_linker import ReturnLinker, StockReversal

router = APIRouter(prefix="/returns", tags=["returns"])


@router.post("/link", response_model=LinkReturnResponse)
async def link_return(
    request: LinkReturnRequest,
    actor_id: str = Depends(get_actor_id),
    repository: SqlAlchemyRepository = Depends(get_repository),
    stock_reversal: StockReversal = Depends(get_stock_reversal),
) -> LinkReturnResponse:
    """Link a return shipment to an order and re-add its stock.

    Returns 404 for an unknown order and 409 when the return is linked
    to a different order.
    """
    linker = ReturnLinker(repository, stock_reversal)
    result = await linker.link(request.return_number, request.order_id, actor_id)
    return LinkReturnResponse(**result.to_dict())
