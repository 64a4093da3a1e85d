"""HubSpot sync connectors package."""
from connectors.base import HubSpotSyncError, SearchExhaustedError, TokenRefreshError
from connectors.hubspot import HubSpotClient
from connectors.pagination import WindowPaginator
from connectors.search import RetryingSearchClient
from connectors.tokens import TokenManager, TokenState

__all__ = [
    "HubSpotClient",
    "HubSpotSyncError",
    "RetryingSearchClient",
    "SearchExhaustedError",
    "TokenManager",
    "TokenRefreshError",
    "TokenState",
    "WindowPaginator",
]
