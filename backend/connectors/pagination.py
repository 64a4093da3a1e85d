"""
Window-based pagination over the HubSpot search API.

The search API refuses offsets past 10,000 matched results for one filter.
Results are requested in ascending modification order, so once the offset
reaches ``MAX_SEARCH_OFFSET`` the window start moves up to the modification
time of the last record seen and paging restarts at offset 0. Records sharing
that boundary timestamp are fetched again; downstream tolerates duplicates.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Sequence

from config import to_epoch_millis
from connectors.models import PageResult
from connectors.search import RetryingSearchClient

logger = logging.getLogger(__name__)

PAGE_LIMIT: int = 100
# Just under the API's 10,000 result ceiling, leaving room for one full page
MAX_SEARCH_OFFSET: int = 9900


@dataclass
class SyncCursor:
    """Position of a paginated sweep."""

    window_start: Optional[datetime]
    window_end: datetime
    has_more: bool = True
    offset: int = 0


def build_window_filter(
    property_name: str,
    window_start: Optional[datetime],
    window_end: datetime,
) -> dict[str, Any]:
    """Filter group selecting records modified within ``[window_start, window_end]``."""
    filters: list[dict[str, Any]] = []
    if window_start is not None:
        filters.append({
            "propertyName": property_name,
            "operator": "GTE",
            "value": str(to_epoch_millis(window_start)),
        })
    filters.append({
        "propertyName": property_name,
        "operator": "LTE",
        "value": str(to_epoch_millis(window_end)),
    })
    return {"filters": filters}


def build_search_query(
    cursor: SyncCursor,
    properties: Sequence[str],
    sort_property: str,
    limit: int = PAGE_LIMIT,
) -> dict[str, Any]:
    return {
        "filterGroups": [build_window_filter(sort_property, cursor.window_start, cursor.window_end)],
        "sorts": [{"propertyName": sort_property, "direction": "ASCENDING"}],
        "properties": list(properties),
        "limit": limit,
        "after": cursor.offset,
    }


class WindowPaginator:
    """Drives a search sweep, shifting the window when the offset cap is near."""

    def __init__(
        self,
        search_client: RetryingSearchClient,
        limit: int = PAGE_LIMIT,
        max_offset: int = MAX_SEARCH_OFFSET,
    ) -> None:
        self.search_client = search_client
        self.limit = limit
        self.max_offset = max_offset

    async def paginate(
        self,
        entity_kind: str,
        window_start: Optional[datetime],
        window_end: datetime,
        properties: Sequence[str],
        sort_property: str,
    ) -> AsyncIterator[PageResult]:
        """
        Yield non-empty pages for ``entity_kind`` modified within the window.

        The caller processes each page before the next one is requested.
        """
        cursor = SyncCursor(window_start=window_start, window_end=window_end)
        page_count: int = 0

        while cursor.has_more:
            query = build_search_query(cursor, properties, sort_property, self.limit)
            page = await self.search_client.search(entity_kind, query)

            if not page.results:
                break

            page_count += 1
            logger.info(
                "Fetched %s batch",
                entity_kind,
                extra={"page": page_count, "count": len(page.results), "after": cursor.offset},
            )

            next_after = page.next_after
            cursor.has_more = bool(next_after)
            cursor.offset = int(next_after) if next_after else 0

            # Captured before yielding so the shift reflects this page only
            last_modified: datetime = page.results[-1].updated_at

            yield page

            if cursor.offset >= self.max_offset:
                logger.info(
                    "Search offset cap reached, shifting %s window",
                    entity_kind,
                    extra={
                        "offset": cursor.offset,
                        "window_start": last_modified.isoformat(),
                        "window_end": cursor.window_end.isoformat(),
                    },
                )
                cursor.offset = 0
                cursor.window_start = last_modified
