"""Abstract base class and result models for invoicing provider clients.

The fiscal flows only need two provider operations: cancel (storno) an
issued invoice and record its collection. Both report failure through
their result instead of raising, so the batch processor can classify the
outcome per item.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field


class CancelResult(BaseModel):
    """Outcome of a provider invoice cancellation."""

    success: bool = Field(..., description="Whether the provider cancelled the invoice")
    cancelled_invoice_number: str | None = Field(
        None, description="Number of the reversal document issued by the provider"
    )
    cancelled_invoice_series: str | None = Field(
        None, description="Series of the reversal document issued by the provider"
    )
    error: str | None = Field(None, description="Provider error message on failure")


class CollectResult(BaseModel):
    """Outcome of a provider invoice collection (mark paid)."""

    success: bool = Field(..., description="Whether the provider recorded the payment")
    error: str | None = Field(None, description="Provider error message on failure")


class ProviderAuthError(Exception):
    """Raised when the provider rejects the configured credentials."""

    pass


class ProviderValidationError(Exception):
    """Raised when the provider rejects a request as invalid (HTTP 400)."""

    pass


class ProviderAPIError(Exception):
    """Raised when the provider returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvoicingProvider(ABC):
    """Abstract base class for external invoicing provider clients.

    Example implementation:
        class OblioClient(InvoicingProvider):
            @property
            def provider_name(self) -> str:
                return "oblio"

            async def cancel_invoice(self, series, number) -> CancelResult:
                ...
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier."""
        ...

    @abstractmethod
    async def cancel_invoice(self, series: str, number: str) -> CancelResult:
        """Cancel an issued invoice by issuing its reversal.

        Args:
            series: Invoice series name.
            number: Invoice number within the series.

        Returns:
            CancelResult with the reversal document reference on success.
        """
        ...

    @abstractmethod
    async def collect_invoice(
        self,
        series: str,
        number: str,
        collection_type: str,
        collection_date: str,
    ) -> CollectResult:
        """Record full collection of an invoice.

        Args:
            series: Invoice series name.
            number: Invoice number within the series.
            collection_type: Provider collection type (e.g. "Ramburs").
            collection_date: Payment date (YYYY-MM-DD).

        Returns:
            CollectResult.
        """
        ...

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        return None
