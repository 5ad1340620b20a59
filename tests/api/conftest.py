"""Pytest fixtures for API tests.

Provides a TestClient bound to the in-memory session, with the provider
factory, stock ledger and retry handlers replaced by test doubles.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from reconciler.api.dependencies import (
    get_app_config,
    get_provider_factory,
    get_retry_handlers,
    get_stock_reversal,
)
from reconciler.api.main import app
from reconciler.config import ReconcilerConfig
from reconciler.db.connection import get_db
from reconciler.db.models import ProcessingErrorType
from reconciler.services.processing_error_service import OperationResult
from reconciler.services.return_linker import StockReversalResult
from tests.helpers import FakeProvider


class RecordingStockReversal:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def reverse_for_order(self, order_id: str, return_id: str) -> StockReversalResult:
        self.calls.append((order_id, return_id))
        return StockReversalResult(success=True, processed=1)


@pytest.fixture
def api_provider() -> FakeProvider:
    return FakeProvider(failures={"666": "Factura nu exista"})


@pytest.fixture
def stock_reversal() -> RecordingStockReversal:
    return RecordingStockReversal()


@pytest.fixture
def client(
    db_session: Session,
    config: ReconcilerConfig,
    api_provider: FakeProvider,
    stock_reversal: RecordingStockReversal,
) -> Generator[TestClient, None, None]:
    """Create a TestClient with overridden dependencies.

    Yields:
        TestClient configured for testing.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    async def retry_invoice(order_id: str) -> OperationResult:
        return OperationResult(success=False, error="Provider still down")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_app_config] = lambda: config
    app.dependency_overrides[get_provider_factory] = lambda: (lambda company: api_provider)
    app.dependency_overrides[get_stock_reversal] = lambda: stock_reversal
    app.dependency_overrides[get_retry_handlers] = lambda: {
        ProcessingErrorType.invoice: retry_invoice
    }
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
