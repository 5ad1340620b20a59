"""Invoicing provider clients consumed by the fiscal flows."""

from reconciler.providers.base import (
    CancelResult,
    CollectResult,
    InvoicingProvider,
    ProviderAPIError,
    ProviderAuthError,
    ProviderValidationError,
)
from reconciler.providers.oblio import (
    OblioClient,
    OblioCredentials,
    create_provider_for_company,
    has_provider_credentials,
)

__all__ = [
    "InvoicingProvider",
    "CancelResult",
    "CollectResult",
    "ProviderAPIError",
    "ProviderAuthError",
    "ProviderValidationError",
    "OblioClient",
    "OblioCredentials",
    "create_provider_for_company",
    "has_provider_credentials",
]
