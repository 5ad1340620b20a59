"""Shared FastAPI dependencies.

Integrations owned by other subsystems are injected here. Retry handlers
are resolved once from processing_errors.handlers when the app starts;
the stock ledger for returns is wired in with app.dependency_overrides.
"""

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from reconciler.config import ReconcilerConfig, get_config
from reconciler.db.connection import get_db
from reconciler.db.models import ProcessingErrorType
from reconciler.services.batch_processor import ProviderFactory
from reconciler.services.processing_error_service import RetryHandler
from reconciler.services.repository import SqlAlchemyRepository
from reconciler.services.return_linker import StockReversal, UnconfiguredStockReversal


def get_actor_id(x_actor_id: str = Header("api", alias="X-Actor-Id")) -> str:
    """Identity recorded in audit entries for the request."""
    return x_actor_id


def get_app_config() -> ReconcilerConfig:
    return get_config()


def get_repository(db: Session = Depends(get_db)) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(db)


def get_provider_factory() -> ProviderFactory | None:
    """Provider client factory; None uses create_provider_for_company."""
    return None


def get_retry_handlers(request: Request) -> dict[ProcessingErrorType, RetryHandler]:
    """Retry handlers resolved from processing_errors.handlers at startup."""
    return request.app.state.retry_handlers


def get_stock_reversal() -> StockReversal:
    return UnconfiguredStockReversal()
