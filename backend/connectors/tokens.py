"""
Per-account OAuth token tracking and refresh.

A ``TokenState`` lives for one account's sync run. Only ``TokenManager``
mutates it; the retrying search client reads it to decide whether a failed
search warrants a refresh before the next attempt.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

import httpx

from config import utcnow
from connectors.base import TokenRefreshError
from connectors.hubspot import HubSpotClient
from connectors.models import HubSpotAccount

logger = logging.getLogger(__name__)


@dataclass
class TokenState:
    """Access token and its expiry as last seen by this run."""

    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def refreshed(self) -> bool:
        return self.expires_at is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        # An unknown expiry counts as expired so the first failure triggers a refresh
        if self.expires_at is None:
            return True
        return (now or utcnow()) > self.expires_at


class TokenManager:
    """Refreshes an account's access token and persists rotated tokens."""

    def __init__(
        self,
        client: HubSpotClient,
        state: TokenState,
        save_tokens: Callable[[HubSpotAccount], Awaitable[None]],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.state = state
        self._save_tokens = save_tokens
        self._clock = clock

    def is_expired(self) -> bool:
        return self.state.is_expired(self._clock())

    async def ensure_fresh_token(self, account: HubSpotAccount) -> bool:
        """
        Refresh unless this run already holds an unexpired token.

        Returns:
            True when a refresh was performed
        """
        if self.state.refreshed and not self.is_expired():
            return False
        await self.refresh(account)
        return True

    async def refresh(self, account: HubSpotAccount) -> str:
        """
        Exchange the account's refresh token for a new access token.

        Raises:
            TokenRefreshError: the exchange failed
        """
        try:
            grant = await self.client.refresh_access_token(account.refresh_token)
        except (httpx.HTTPError, ValueError) as e:
            raise TokenRefreshError(account.hub_id, str(e)) from e

        self.state.access_token = grant.access_token
        self.state.expires_at = self._clock() + timedelta(seconds=grant.expires_in)
        self.client.set_access_token(grant.access_token)

        rotated: bool = grant.access_token != account.access_token
        if grant.refresh_token and grant.refresh_token != account.refresh_token:
            account.refresh_token = grant.refresh_token
            rotated = True

        if rotated:
            account.access_token = grant.access_token
            await self._save_tokens(account)

        logger.info(
            "Refreshed HubSpot access token",
            extra={
                "hub_id": account.hub_id,
                "expires_at": self.state.expires_at.isoformat(),
                "rotated": rotated,
            },
        )
        return grant.access_token
