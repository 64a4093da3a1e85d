import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from connectors.base import SearchExhaustedError, TokenRefreshError
from connectors.models import HubSpotAccount, PageResult
from connectors.search import RetryingSearchClient
from connectors.tokens import TokenState

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _FlakyClient:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[tuple[str, dict]] = []

    async def search(self, entity_kind: str, query: dict) -> PageResult:
        self.calls.append((entity_kind, query))
        if len(self.calls) <= self.failures:
            raise httpx.ConnectError("connection reset")
        return PageResult(results=[])


class _FakeTokenManager:
    def __init__(self, expired: bool, refresh_error: Exception | None = None) -> None:
        self.state = TokenState(
            access_token="tok",
            expires_at=NOW - timedelta(minutes=1) if expired else NOW + timedelta(hours=1),
        )
        self._expired = expired
        self._refresh_error = refresh_error
        self.refreshes = 0

    def is_expired(self) -> bool:
        return self._expired

    async def refresh(self, account: HubSpotAccount) -> str:
        self.refreshes += 1
        if self._refresh_error:
            raise self._refresh_error
        self._expired = False
        return "new-tok"


def _build(failures: int, expired: bool = False, refresh_error: Exception | None = None):
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    client = _FlakyClient(failures)
    token_manager = _FakeTokenManager(expired, refresh_error)
    search_client = RetryingSearchClient(
        client,
        token_manager,
        HubSpotAccount(hubId="123"),
        max_attempts=4,
        backoff_base=5.0,
        sleep=_sleep,
    )
    return search_client, client, token_manager, delays


def test_search_gives_up_after_four_attempts() -> None:
    search_client, client, _, delays = _build(failures=10)

    with pytest.raises(SearchExhaustedError) as exc_info:
        asyncio.run(search_client.search("contacts", {"limit": 100}))

    assert len(client.calls) == 4
    assert exc_info.value.entity_kind == "contacts"
    assert "contacts" in str(exc_info.value)
    assert delays == [10.0, 20.0, 40.0]


def test_search_recovers_after_three_failures() -> None:
    search_client, client, _, delays = _build(failures=3)

    page = asyncio.run(search_client.search("companies", {"limit": 100}))

    assert page.results == []
    assert len(client.calls) == 4
    assert delays == [10.0, 20.0, 40.0]


def test_search_success_on_first_attempt_does_not_sleep() -> None:
    search_client, client, token_manager, delays = _build(failures=0)

    asyncio.run(search_client.search("meetings", {}))

    assert len(client.calls) == 1
    assert delays == []
    assert token_manager.refreshes == 0


def test_failed_search_refreshes_expired_token_before_retry() -> None:
    search_client, _, token_manager, _ = _build(failures=2, expired=True)

    asyncio.run(search_client.search("contacts", {}))

    # Refreshed once; the new token is not expired for the second retry
    assert token_manager.refreshes == 1


def test_failed_search_keeps_valid_token() -> None:
    search_client, _, token_manager, _ = _build(failures=2, expired=False)

    asyncio.run(search_client.search("contacts", {}))

    assert token_manager.refreshes == 0


def test_refresh_failure_during_retry_does_not_abort() -> None:
    search_client, client, token_manager, _ = _build(
        failures=1, expired=True, refresh_error=TokenRefreshError("123", "invalid_grant")
    )

    page = asyncio.run(search_client.search("contacts", {}))

    assert page.results == []
    assert len(client.calls) == 2
    assert token_manager.refreshes == 1
