"""
HubSpot API client used by the sync engine.

Responsibilities:
- Authenticate requests with the account's current OAuth access token
- Exchange refresh tokens for new access tokens
- Run CRM searches and batch association reads
- Surface HubSpot's error message on 4xx/5xx and wait out 429s

Retry on generic failures is *not* handled here; see
``connectors.search.RetryingSearchClient``.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from config import settings
from connectors.models import AssociationResult, PageResult, TokenGrant

logger = logging.getLogger(__name__)

# HubSpot's association endpoints use upper-case object type names
_ASSOCIATION_OBJECT_TYPES: dict[str, str] = {
    "contacts": "CONTACTS",
    "companies": "COMPANIES",
    "meetings": "MEETINGS",
}


class HubSpotClient:
    """Async HTTP client for the HubSpot CRM endpoints the sync engine needs."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        api_base: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            access_token: Token used for CRM calls until ``set_access_token``
            api_base: HubSpot API root, defaults to settings
            client_id: OAuth app client ID used for refresh grants
            client_secret: OAuth app client secret used for refresh grants
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.api_base: str = (api_base or settings.HUBSPOT_API_BASE).rstrip("/")
        self._access_token: Optional[str] = access_token
        self._client_id: Optional[str] = client_id or settings.HUBSPOT_CLIENT_ID
        self._client_secret: Optional[str] = client_secret or settings.HUBSPOT_CLIENT_SECRET
        self._client = httpx.AsyncClient(
            base_url=self.api_base,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, access_token: str) -> None:
        self._access_token = access_token

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HubSpotClient":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

    def _get_headers(self) -> dict[str, str]:
        """Get authorization headers for HubSpot API."""
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[dict[str, Any]] = None,
        form_data: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
        _max_retries: int = 5,
    ) -> dict[str, Any]:
        """Make a request to HubSpot API with 429 retry."""
        headers: dict[str, str] = self._get_headers() if authenticated else {}

        last_exc: Optional[httpx.HTTPStatusError] = None
        for attempt in range(_max_retries + 1):
            response: httpx.Response = await self._client.request(
                method=method,
                url=endpoint,
                headers=headers,
                params=params,
                json=json_data,
                data=form_data,
            )

            # Retry on 429 rate limit
            if response.status_code == 429 and attempt < _max_retries:
                retry_after: float = float(response.headers.get("Retry-After", "10"))
                wait_secs: float = min(retry_after, 30.0)
                logger.warning(
                    "HubSpot rate limited on %s, retrying in %ss (attempt %d/%d)",
                    endpoint, wait_secs, attempt + 1, _max_retries,
                )
                await asyncio.sleep(wait_secs)
                continue

            # If error, try to get detailed error message from HubSpot
            if response.status_code >= 400:
                error_detail: str = ""
                try:
                    error_body: dict[str, Any] = response.json()
                    # HubSpot error format: {"message": "...", "errors": [...]}
                    error_detail = error_body.get("message", "")
                    if error_body.get("errors"):
                        error_details: list[str] = [e.get("message", str(e)) for e in error_body["errors"]]
                        error_detail = f"{error_detail}: {'; '.join(error_details)}"
                except ValueError:
                    error_detail = response.text[:500] if response.text else ""

                last_exc = httpx.HTTPStatusError(
                    f"HubSpot API error ({response.status_code}): {error_detail}",
                    request=response.request,
                    response=response,
                )
                raise last_exc

            return response.json()

        # Should not reach here, but satisfy type checker
        assert last_exc is not None
        raise last_exc

    async def search(self, entity_kind: str, query: dict[str, Any]) -> PageResult:
        """Run one CRM search request for ``entity_kind`` (contacts, companies, meetings)."""
        data = await self._make_request(
            "POST",
            f"/crm/v3/objects/{entity_kind}/search",
            json_data=query,
        )
        return PageResult.model_validate(data)

    async def batch_read_associations(
        self,
        from_kind: str,
        to_kind: str,
        ids: list[str],
    ) -> list[AssociationResult]:
        """Read associations for a batch of source ids in one request."""
        from_type = _ASSOCIATION_OBJECT_TYPES.get(from_kind, from_kind.upper())
        to_type = _ASSOCIATION_OBJECT_TYPES.get(to_kind, to_kind.upper())
        data = await self._make_request(
            "POST",
            f"/crm/v3/associations/{from_type}/{to_type}/batch/read",
            json_data={"inputs": [{"id": record_id} for record_id in ids]},
        )
        return [AssociationResult.model_validate(r) for r in data.get("results") or []]

    async def refresh_access_token(self, refresh_token: Optional[str]) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        if not refresh_token:
            raise ValueError("Account has no refresh token")

        data = await self._make_request(
            "POST",
            "/oauth/v1/token",
            form_data={
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
            },
            authenticated=False,
        )
        return TokenGrant.from_response(data)
