import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from connectors.base import TokenRefreshError
from connectors.models import HubSpotAccount, TokenGrant
from connectors.tokens import TokenManager, TokenState

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _FakeClient:
    def __init__(self, grants: list[TokenGrant | Exception]) -> None:
        self._grants = list(grants)
        self.refresh_tokens: list[str | None] = []
        self.access_token: str | None = None

    async def refresh_access_token(self, refresh_token: str | None) -> TokenGrant:
        self.refresh_tokens.append(refresh_token)
        grant = self._grants.pop(0)
        if isinstance(grant, Exception):
            raise grant
        return grant

    def set_access_token(self, access_token: str) -> None:
        self.access_token = access_token


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _build(grants, account=None, clock=None):
    saved: list[HubSpotAccount] = []

    async def _save(acc: HubSpotAccount) -> None:
        saved.append(acc.model_copy(deep=True))

    client = _FakeClient(grants)
    manager = TokenManager(client, TokenState(), save_tokens=_save, clock=clock or _Clock(NOW))
    account = account or HubSpotAccount(hubId="42", accessToken="old", refreshToken="refresh")
    return manager, client, account, saved


def test_first_call_refreshes_and_persists_rotated_token() -> None:
    manager, client, account, saved = _build([TokenGrant(access_token="new", expires_in=1800)])

    refreshed = asyncio.run(manager.ensure_fresh_token(account))

    assert refreshed is True
    assert client.refresh_tokens == ["refresh"]
    assert client.access_token == "new"
    assert account.access_token == "new"
    assert manager.state.expires_at == NOW + timedelta(seconds=1800)
    assert [s.access_token for s in saved] == ["new"]


def test_unchanged_token_is_not_persisted() -> None:
    manager, _, account, saved = _build([TokenGrant(access_token="old", expires_in=1800)])

    asyncio.run(manager.ensure_fresh_token(account))

    assert saved == []
    assert manager.state.access_token == "old"


def test_fresh_token_is_not_refreshed_again() -> None:
    clock = _Clock(NOW)
    manager, client, account, _ = _build(
        [TokenGrant(access_token="new", expires_in=1800)], clock=clock
    )

    async def _run() -> bool:
        await manager.ensure_fresh_token(account)
        clock.now = NOW + timedelta(minutes=10)
        return await manager.ensure_fresh_token(account)

    assert asyncio.run(_run()) is False
    assert len(client.refresh_tokens) == 1


def test_expired_token_is_refreshed() -> None:
    clock = _Clock(NOW)
    manager, client, account, _ = _build(
        [
            TokenGrant(access_token="new", expires_in=60),
            TokenGrant(access_token="newer", expires_in=60),
        ],
        clock=clock,
    )

    async def _run() -> bool:
        await manager.ensure_fresh_token(account)
        clock.now = NOW + timedelta(minutes=5)
        return await manager.ensure_fresh_token(account)

    assert asyncio.run(_run()) is True
    assert account.access_token == "newer"
    assert len(client.refresh_tokens) == 2


def test_refresh_failure_raises_token_refresh_error() -> None:
    request = httpx.Request("POST", "https://api.hubapi.com/oauth/v1/token")
    error = httpx.HTTPStatusError(
        "HubSpot API error (400): invalid_grant",
        request=request,
        response=httpx.Response(400, request=request),
    )
    manager, _, account, saved = _build([error])

    with pytest.raises(TokenRefreshError) as exc_info:
        asyncio.run(manager.ensure_fresh_token(account))

    assert exc_info.value.hub_id == "42"
    assert account.access_token == "old"
    assert saved == []
    assert manager.state.refreshed is False


def test_rotated_refresh_token_is_kept() -> None:
    manager, _, account, saved = _build(
        [TokenGrant(access_token="old", expires_in=1800, refresh_token="refresh-2")]
    )

    asyncio.run(manager.refresh(account))

    assert account.refresh_token == "refresh-2"
    assert [s.refresh_token for s in saved] == ["refresh-2"]


def test_token_state_without_expiry_counts_as_expired() -> None:
    assert TokenState().is_expired(NOW) is True
    assert TokenState(expires_at=NOW + timedelta(seconds=1)).is_expired(NOW) is False
    assert TokenState(expires_at=NOW - timedelta(seconds=1)).is_expired(NOW) is True


def test_grant_keeps_zero_expiry_and_empty_refresh_token() -> None:
    grant = TokenGrant.from_response({"access_token": "tok", "expires_in": 0, "refresh_token": ""})

    assert grant.expires_in == 0
    assert grant.refresh_token == ""


def test_grant_falls_back_to_camel_case_keys() -> None:
    grant = TokenGrant.from_response({"accessToken": "tok", "expiresIn": 1800, "refreshToken": "r"})

    assert grant.access_token == "tok"
    assert grant.expires_in == 1800
    assert grant.refresh_token == "r"
