"""
Bounded retry around HubSpot CRM searches.

Every search goes through ``RetryingSearchClient.search``. The policy is the
same for every entity kind: up to ``max_attempts`` tries, waiting
``backoff_base * 2**attempt`` seconds after failed attempt ``attempt`` (10s,
20s, 40s with the defaults), refreshing the access token first when the
tracked expiry has passed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from config import settings
from connectors.base import SearchExhaustedError, TokenRefreshError
from connectors.hubspot import HubSpotClient
from connectors.models import HubSpotAccount, PageResult
from connectors.tokens import TokenManager

logger = logging.getLogger(__name__)


class RetryingSearchClient:
    """Search wrapper adding retry, backoff and opportunistic token refresh."""

    def __init__(
        self,
        client: HubSpotClient,
        token_manager: TokenManager,
        account: HubSpotAccount,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.token_manager = token_manager
        self.account = account
        self.max_attempts: int = max_attempts or settings.SEARCH_MAX_ATTEMPTS
        self.backoff_base: float = (
            backoff_base if backoff_base is not None else settings.SEARCH_BACKOFF_BASE_SECONDS
        )
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    async def search(self, entity_kind: str, query: dict[str, Any]) -> PageResult:
        """
        Run a search, retrying failures.

        Any response that does not raise is accepted, including an empty page.

        Raises:
            SearchExhaustedError: every attempt failed
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.client.search(entity_kind, query)
            except Exception as exc:
                if attempt >= self.max_attempts:
                    logger.error(
                        "HubSpot %s search failed on final attempt",
                        entity_kind,
                        extra={"hub_id": self.account.hub_id, "attempt": attempt, "error": str(exc)},
                    )
                    raise SearchExhaustedError(entity_kind, attempt) from exc

                delay: float = self.backoff_delay(attempt)
                logger.warning(
                    "HubSpot %s search failed (attempt %d/%d), retrying in %ss: %s",
                    entity_kind, attempt, self.max_attempts, delay, exc,
                    extra={"hub_id": self.account.hub_id},
                )

                if self.token_manager.is_expired():
                    try:
                        await self.token_manager.refresh(self.account)
                    except TokenRefreshError as refresh_err:
                        logger.warning(
                            "Token refresh before retry failed: %s",
                            refresh_err,
                            extra={"hub_id": self.account.hub_id, "entity": entity_kind},
                        )

                await self._sleep(delay)

        raise SearchExhaustedError(entity_kind, self.max_attempts)
