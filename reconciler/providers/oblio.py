"""Oblio invoicing provider client.

Implements InvoicingProvider against the Oblio REST API.

Authentication uses OAuth 2.0 client credentials: the account email is the
client id and the secret token from account settings is the client secret.
Tokens are cached until one minute before they expire.

Cancel and collect change fiscal state, so a request is only retried when it
never reached Oblio: connection failures and 429 rate-limit rejections, with
linear backoff. Read timeouts and 5xx responses are ambiguous (the document
may already have been changed) and are reported without a retry.
Authentication (401) and validation (400) failures are not retried either.

API Reference: https://www.oblio.eu/api
"""

import asyncio
import logging
import time
from typing import Any

import httpx
from pydantic import BaseModel

from reconciler.config import ReconcilerConfig, get_config
from reconciler.db.models import Company
from reconciler.providers.base import (
    CancelResult,
    CollectResult,
    InvoicingProvider,
    ProviderAPIError,
    ProviderAuthError,
    ProviderValidationError,
)

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before the provider expires it
TOKEN_REFRESH_MARGIN_SECONDS = 60
DEFAULT_TOKEN_TTL_SECONDS = 3600


class OblioCredentials(BaseModel):
    """Per-company Oblio account credentials."""

    email: str
    secret_token: str
    cif: str


class OblioClient(InvoicingProvider):
    """Oblio client for invoice cancellation and collection.

    Example usage:
        async with OblioClient(credentials, timeout=15.0) as client:
            result = await client.collect_invoice("FCT", "1024", "Ramburs", "2024-03-01")
    """

    def __init__(
        self,
        credentials: OblioCredentials,
        base_url: str = "https://www.oblio.eu/api",
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Oblio account credentials.
            base_url: API base URL.
            timeout: Per-request timeout in seconds.
            max_attempts: Attempts per request for retryable failures.
            backoff_seconds: Base delay between attempts (multiplied by attempt).
            http_client: Optional externally owned httpx client (not closed here).
        """
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._client = http_client
        self._owns_client = http_client is None
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    @property
    def provider_name(self) -> str:
        return "oblio"

    async def __aenter__(self) -> "OblioClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _get_access_token(self) -> str:
        """Return a cached access token, requesting a new one when stale.

        Raises:
            ProviderAuthError: If the provider rejects the credentials.
        """
        now = time.monotonic()
        if self._access_token and now < self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token

        logger.info("Requesting Oblio access token for CIF %s", self._credentials.cif)
        try:
            response = await self._get_client().post(
                f"{self._base_url}/authorize/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._credentials.email,
                    "client_secret": self._credentials.secret_token,
                },
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            raise ProviderAPIError(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderAuthError(
                "Authentication failed. Check the Oblio email and secret token."
            )

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise ProviderAuthError("Oblio did not return an access token.")

        self._access_token = token
        self._token_expires_at = now + float(
            payload.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        )
        return token

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request, retrying only failures Oblio never saw.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE).
            endpoint: API path (e.g. '/docs/invoice/collect').
            json: JSON body.

        Returns:
            Parsed JSON response.

        Raises:
            ProviderAuthError: On 401 (token is discarded).
            ProviderValidationError: On 400.
            ProviderAPIError: On other errors, after attempts are exhausted
                for connection failures and 429.
        """
        url = f"{self._base_url}{endpoint}"
        last_error: ProviderAPIError | None = None

        for attempt in range(1, self._max_attempts + 1):
            token = await self._get_access_token()
            try:
                response = await self._get_client().request(
                    method,
                    url,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self._timeout,
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                last_error = ProviderAPIError(f"Request failed: {e}")
            except httpx.RequestError as e:
                # The request may have been applied; a retry could repeat it
                raise ProviderAPIError(
                    f"Request failed, outcome unknown (check Oblio before retrying): {e}"
                ) from e
            else:
                try:
                    data = response.json()
                except ValueError:
                    data = {}
                    if response.is_success:
                        raise ProviderAPIError(
                            f"Invalid response from Oblio: {response.text[:200]}",
                            response.status_code,
                        )

                if response.is_success:
                    return data

                message = (
                    data.get("statusMessage")
                    or data.get("error")
                    or data.get("message")
                    or f"HTTP {response.status_code}"
                )
                if response.status_code == 401:
                    self._access_token = None
                    raise ProviderAuthError(message)
                if response.status_code == 400:
                    raise ProviderValidationError(message)

                last_error = ProviderAPIError(message, response.status_code)
                if response.status_code != 429:
                    raise last_error

            if attempt < self._max_attempts:
                logger.warning(
                    "Oblio %s %s failed (attempt %d/%d): %s",
                    method, endpoint, attempt, self._max_attempts, last_error,
                )
                await asyncio.sleep(self._backoff_seconds * attempt)

        raise last_error or ProviderAPIError("Unknown Oblio error")

    async def cancel_invoice(self, series: str, number: str) -> CancelResult:
        """Cancel an invoice in Oblio.

        Oblio issues the reversal document itself; when the response carries
        its series/number they are returned on the result.

        Args:
            series: Invoice series name.
            number: Invoice number.

        Returns:
            CancelResult, with the reversal series/number when Oblio reports them.
        """
        try:
            response = await self._request(
                "PUT",
                "/docs/invoice/cancel",
                json={
                    "cif": self._credentials.cif,
                    "seriesName": series,
                    "number": number,
                },
            )
        except (ProviderAPIError, ProviderAuthError, ProviderValidationError) as e:
            logger.warning("Oblio cancel failed for %s %s: %s", series, number, e)
            return CancelResult(success=False, error=str(e))

        data = response.get("data") or {}
        reversal_number = data.get("number")
        return CancelResult(
            success=True,
            cancelled_invoice_number=str(reversal_number) if reversal_number is not None else None,
            cancelled_invoice_series=data.get("seriesName"),
        )


    async def collect_invoice(
        self,
        series: str,
        number: str,
        collection_type: str,
        collection_date: str,
    ) -> CollectResult:
        """Record full collection of an invoice on the given date."""
        try:
            await self._request(
                "PUT",
                "/docs/invoice/collect",
                json={
                    "cif": self._credentials.cif,
                    "seriesName": series,
                    "number": number,
                    "collect": {
                        "type": collection_type,
                        "documentDate": collection_date,
                    },
                },
            )
        except (ProviderAPIError, ProviderAuthError, ProviderValidationError) as e:
            logger.warning("Oblio collect failed for %s %s: %s", series, number, e)
            return CollectResult(success=False, error=str(e))
        return CollectResult(success=True)


def has_provider_credentials(company: Company | None) -> bool:
    """Check whether a company has Oblio credentials configured."""
    return bool(
        company is not None
        and (company.oblio_email or "").strip()
        and (company.oblio_secret_token or "").strip()
    )


def create_provider_for_company(
    company: Company | None,
    config: ReconcilerConfig | None = None,
) -> OblioClient | None:
    """Create an Oblio client for a company.

    Args:
        company: Issuing company.
        config: Reconciler config (defaults to the process config).

    Returns:
        OblioClient, or None when the company has no credentials.
    """
    if not has_provider_credentials(company):
        return None

    cfg = config or get_config()
    return OblioClient(
        credentials=OblioCredentials(
            email=company.oblio_email.strip(),
            secret_token=company.oblio_secret_token.strip(),
            cif=company.oblio_cif or company.cif or "",
        ),
        base_url=cfg.provider.base_url,
        timeout=cfg.provider.timeout_seconds,
        max_attempts=cfg.provider.max_attempts,
        backoff_seconds=cfg.provider.backoff_seconds,
    )
