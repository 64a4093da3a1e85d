"""
Analytics sink client.

Batches of normalized events are POSTed as JSON to ``ANALYTICS_SINK_URL``.
The response body is not used; HTTP errors raise so the caller can log them.
"""

import logging
from typing import Optional, Sequence

import httpx

from config import settings
from connectors.models import NormalizedEvent

logger = logging.getLogger(__name__)


class HttpAnalyticsSink:
    """Delivers event batches to the analytics ingestion endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url: str = url or settings.ANALYTICS_SINK_URL
        self.api_key: Optional[str] = api_key or settings.ANALYTICS_SINK_API_KEY
        self._timeout: float = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, batch: Sequence[NormalizedEvent]) -> None:
        if not batch:
            return

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                self.url,
                headers=self._get_headers(),
                json={"actions": [event.to_payload() for event in batch]},
            )
            response.raise_for_status()

        logger.info("Delivered %d actions to analytics sink", len(batch))
