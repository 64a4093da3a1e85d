"""
Error types shared by the HubSpot sync engine.

Taxonomy:
- ``TokenRefreshError``: the refresh-token exchange failed. Callers log it and
  carry on; later searches refresh again once the tracked expiry has passed.
- ``SearchExhaustedError``: a search kept failing for every allowed attempt.
  Fatal for the current entity's sweep, caught by the orchestrator.
"""

from typing import Optional


class HubSpotSyncError(RuntimeError):
    """Base class for sync engine failures."""


class TokenRefreshError(HubSpotSyncError):
    """Raised when a HubSpot access token cannot be refreshed."""

    def __init__(self, hub_id: Optional[str], reason: str) -> None:
        self.hub_id = hub_id
        self.reason = reason
        super().__init__(f"Failed to refresh HubSpot access token for hub {hub_id}: {reason}")


class SearchExhaustedError(HubSpotSyncError):
    """Raised when a search failed on every retry attempt."""

    def __init__(self, entity_kind: str, attempts: int) -> None:
        self.entity_kind = entity_kind
        self.attempts = attempts
        super().__init__(
            f"Failed to fetch {entity_kind} after {attempts} attempts. Aborting."
        )
