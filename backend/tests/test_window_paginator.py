import asyncio
from datetime import datetime, timedelta, timezone

from config import to_epoch_millis
from connectors.models import PageResult
from connectors.pagination import MAX_SEARCH_OFFSET, WindowPaginator, build_window_filter

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 2, 1, tzinfo=timezone.utc)


def _record(record_id: int, updated_at: datetime) -> dict:
    return {
        "id": str(record_id),
        "properties": {"name": f"Company {record_id}"},
        "createdAt": (updated_at - timedelta(days=1)).isoformat(),
        "updatedAt": updated_at.isoformat(),
    }


def _page(records: list[dict], after: str | None) -> PageResult:
    body: dict = {"results": records}
    if after is not None:
        body["paging"] = {"next": {"after": after}}
    return PageResult.model_validate(body)


class _ScriptedSearch:
    def __init__(self, pages: list[PageResult]) -> None:
        self._pages = list(pages)
        self.queries: list[dict] = []

    async def search(self, entity_kind: str, query: dict) -> PageResult:
        self.queries.append(query)
        return self._pages.pop(0) if self._pages else PageResult(results=[])


def _collect(paginator: WindowPaginator, window_start=START) -> list[PageResult]:
    async def _run() -> list[PageResult]:
        return [
            page
            async for page in paginator.paginate(
                "companies", window_start, END, ["name", "domain"], "hs_lastmodifieddate"
            )
        ]

    return asyncio.run(_run())


def test_requests_sorted_window_with_page_size_100() -> None:
    search = _ScriptedSearch([_page([_record(1, START)], after=None)])

    pages = _collect(WindowPaginator(search))

    assert len(pages) == 1
    query = search.queries[0]
    assert query["limit"] == 100
    assert query["after"] == 0
    assert query["sorts"] == [{"propertyName": "hs_lastmodifieddate", "direction": "ASCENDING"}]
    assert query["properties"] == ["name", "domain"]
    assert query["filterGroups"] == [{
        "filters": [
            {"propertyName": "hs_lastmodifieddate", "operator": "GTE", "value": str(to_epoch_millis(START))},
            {"propertyName": "hs_lastmodifieddate", "operator": "LTE", "value": str(to_epoch_millis(END))},
        ],
    }]


def test_first_sync_has_no_lower_bound() -> None:
    group = build_window_filter("lastmodifieddate", None, END)

    assert group == {
        "filters": [
            {"propertyName": "lastmodifieddate", "operator": "LTE", "value": str(to_epoch_millis(END))},
        ],
    }


def test_follows_paging_cursor_until_exhausted() -> None:
    search = _ScriptedSearch([
        _page([_record(1, START)], after="100"),
        _page([_record(2, START + timedelta(hours=1))], after="200"),
        _page([_record(3, START + timedelta(hours=2))], after=None),
    ])

    pages = _collect(WindowPaginator(search))

    assert [p.results[0].id for p in pages] == ["1", "2", "3"]
    assert [q["after"] for q in search.queries] == [0, 100, 200]


def test_stops_on_empty_page_even_with_cursor() -> None:
    search = _ScriptedSearch([
        _page([_record(1, START)], after="100"),
        _page([], after="200"),
    ])

    pages = _collect(WindowPaginator(search))

    assert len(pages) == 1
    assert len(search.queries) == 2


def test_offset_cap_shifts_window_to_last_record() -> None:
    boundary = START + timedelta(days=3, milliseconds=250)
    search = _ScriptedSearch([
        _page([_record(1, START), _record(2, boundary)], after=str(MAX_SEARCH_OFFSET)),
        _page([_record(2, boundary), _record(3, boundary + timedelta(seconds=1))], after=None),
    ])

    pages = _collect(WindowPaginator(search))

    second = search.queries[1]
    assert second["after"] == 0
    lower = second["filterGroups"][0]["filters"][0]
    upper = second["filterGroups"][0]["filters"][1]
    assert lower == {
        "propertyName": "hs_lastmodifieddate",
        "operator": "GTE",
        "value": str(to_epoch_millis(boundary)),
    }
    # Window end stays fixed
    assert upper["value"] == str(to_epoch_millis(END))
    # Boundary record is fetched again, nothing in between is skipped
    seen = [r.id for p in pages for r in p.results]
    assert seen == ["1", "2", "2", "3"]


def test_window_not_shifted_below_offset_cap() -> None:
    search = _ScriptedSearch([
        _page([_record(1, START + timedelta(hours=5))], after=str(MAX_SEARCH_OFFSET - 100)),
        _page([_record(2, START + timedelta(hours=6))], after=None),
    ])

    _collect(WindowPaginator(search))

    second = search.queries[1]
    assert second["after"] == MAX_SEARCH_OFFSET - 100
    assert second["filterGroups"][0]["filters"][0]["value"] == str(to_epoch_millis(START))


def test_pages_are_consumed_before_next_request() -> None:
    search = _ScriptedSearch([
        _page([_record(1, START)], after="100"),
        _page([_record(2, START)], after=None),
    ])
    paginator = WindowPaginator(search)
    requests_seen_per_page: list[int] = []

    async def _run() -> None:
        async for _ in paginator.paginate("companies", START, END, ["name"], "hs_lastmodifieddate"):
            requests_seen_per_page.append(len(search.queries))

    asyncio.run(_run())

    assert requests_seen_per_page == [1, 2]
