"""Tests for the fan-out aggregation service."""

from __future__ import annotations

import asyncio
from typing import Any, cast

import httpx
import pytest

from app.config import Settings
from app.models import Site
from app.services.aggregation import (
    AggregationService,
    NoSitesAvailableError,
    SearchParams,
    SiteNotFoundError,
    VideoListParams,
)
from app.services.site_registry import SiteRegistry
from app.services.upstream import SiteOutcome, UpstreamClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


SITES = [
    Site(key="alpha", name="Alpha", api="https://alpha.example.com/api"),
    Site(key="beta", name="Beta", api="https://beta.example.com/api"),
    Site(key="gamma", name="Gamma", api="https://gamma.example.com/api"),
    Site(key="adult", name="Adult", api="https://adult.example.com/api", is_adult=True),
]


def _vod(vod_id: str, name: str, year: str = "2010", episodes: int = 1, **extra: Any) -> dict[str, Any]:
    play = "#".join(
        f"EP{n}$https://cdn.example.com/{vod_id}/{n}.m3u8" for n in range(episodes)
    )
    return {"vod_id": vod_id, "vod_name": name, "vod_year": year, "vod_play_url": play, **extra}


FIXTURES: dict[str, Any] = {
    "alpha.example.com": {"list": [_vod("a1", "Inception"), _vod("a2", "Interstellar", "2014")]},
    "beta.example.com": {"list": [_vod("b1", "In ception", vod_class="科幻,动作")]},
    "gamma.example.com": {"list": [_vod("g1", "Inception", "unknown", episodes=3)]},
    "adult.example.com": {"list": [_vod("x1", "Inception After Dark")]},
}


class RecordingStore:
    def __init__(self, value: bool | None = None, *, fail: bool = False) -> None:
        self.value = value
        self.fail = fail

    async def get_adult_content_filter_preference(self, user_id: str) -> bool | None:
        if self.fail:
            raise RuntimeError("store offline")
        return self.value


class Harness:
    """Wires a service to a mock transport that serves per-host fixtures."""

    def __init__(
        self,
        *,
        failing: set[str] | None = None,
        delays: dict[str, float] | None = None,
        store: RecordingStore | None = None,
        sites: list[Site] | None = None,
        category_payload: Any = None,
        **settings_overrides: Any,
    ) -> None:
        self.failing = failing or set()
        self.delays = delays or {}
        self.category_payload = category_payload
        self.requested_hosts: list[str] = []
        self.outcomes: list[SiteOutcome] = []
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        settings = Settings(_env_file=None, **settings_overrides)  # type: ignore[arg-type]
        self.service = AggregationService(
            settings,
            UpstreamClient(settings, self.http_client),
            SiteRegistry.from_sites(sites if sites is not None else SITES),
            store,
            outcome_reporter=self.outcomes.append,
        )

    async def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        self.requested_hosts.append(host)
        delay = self.delays.get(host)
        if delay:
            await asyncio.sleep(delay)
        if host in self.failing:
            raise httpx.ConnectError("unreachable", request=request)
        if request.url.params.get("ac") == "list":
            return httpx.Response(200, json=self.category_payload or {})
        return httpx.Response(200, json=FIXTURES[host])


@pytest.mark.anyio("asyncio")
async def test_search_groups_results_across_sites() -> None:
    harness = Harness()
    async with harness.http_client:
        result = await harness.service.search(SearchParams(q="Inception"))

    assert result.error is None
    assert [(item.source_key, item.id) for item in result.items] == [
        ("alpha", "a1"),
        ("alpha", "a2"),
        ("beta", "b1"),
        ("gamma", "g1"),
    ]
    assert [group.key for group in result.groups] == [
        "Inception-2010-movie",
        "Inception-unknown-tv",
        "Interstellar-2014-movie",
    ]
    assert [item.source_key for item in result.groups[0].items] == ["alpha", "beta"]
    assert "adult.example.com" not in harness.requested_hosts


@pytest.mark.anyio("asyncio")
async def test_failing_site_contributes_nothing() -> None:
    harness = Harness(failing={"beta.example.com"})
    async with harness.http_client:
        result = await harness.service.search(SearchParams(q="Inception"))

    assert [item.id for item in result.items] == ["a1", "a2", "g1"]
    outcomes = {outcome.site_key: outcome for outcome in harness.outcomes}
    assert outcomes["beta"].ok is False
    assert outcomes["alpha"].ok is True
    assert outcomes["alpha"].item_count == 2


@pytest.mark.anyio("asyncio")
async def test_timing_out_site_does_not_affect_others() -> None:
    harness = Harness(delays={"beta.example.com": 2}, VIDEO_TIMEOUT=0.2)
    async with harness.http_client:
        items, outcomes = await harness.service.fan_out_search("Inception", SITES[:3])

    assert [(item.source_key, item.id) for item in items] == [
        ("alpha", "a1"),
        ("alpha", "a2"),
        ("gamma", "g1"),
    ]
    assert [outcome.ok for outcome in outcomes] == [True, False, True]
    assert "Timeout" in (outcomes[1].error or "")


@pytest.mark.anyio("asyncio")
async def test_concurrency_does_not_reorder_sites() -> None:
    harness = Harness(delays={"alpha.example.com": 0.05})
    async with harness.http_client:
        first = await harness.service.search(SearchParams(q="Inception"))
        second = await harness.service.search(SearchParams(q="Inception"))

    assert [item.source_key for item in first.items] == ["alpha", "alpha", "beta", "gamma"]
    assert first.model_dump() == second.model_dump()


@pytest.mark.anyio("asyncio")
async def test_unexpected_adapter_error_degrades_to_empty() -> None:
    harness = Harness()

    original_search = harness.service._upstream.search

    async def flaky_search(site: Site, query: str):
        if site.key == "gamma":
            raise RuntimeError("parser exploded")
        return await original_search(site, query)

    harness.service._upstream.search = flaky_search  # type: ignore[method-assign]
    async with harness.http_client:
        items, outcomes = await harness.service.fan_out_search("Inception", SITES[:3])

    assert [item.source_key for item in items] == ["alpha", "alpha", "beta"]
    assert [outcome.ok for outcome in outcomes] == [True, True, False]
    assert "parser exploded" in (outcomes[2].error or "")


@pytest.mark.anyio("asyncio")
async def test_blank_query_never_contacts_upstream() -> None:
    harness = Harness()
    async with harness.http_client:
        result = await harness.service.search(SearchParams(q="   "))

    assert result.items == []
    assert result.groups == []
    assert result.error is None
    assert harness.requested_hosts == []


@pytest.mark.anyio("asyncio")
async def test_adult_sites_require_preference_and_request() -> None:
    harness = Harness(store=RecordingStore(False))
    async with harness.http_client:
        opted_in = await harness.service.search(
            SearchParams(q="Inception", user="carol", include_adult="true")
        )
        not_requested = await harness.service.search(
            SearchParams(q="Inception", user="carol")
        )

    assert "adult" in {item.source_key for item in opted_in.items}
    assert "adult" not in {item.source_key for item in not_requested.items}
    assert opted_in.to_payload()["adult_results"] == []


@pytest.mark.anyio("asyncio")
async def test_store_error_keeps_adult_filter_on() -> None:
    harness = Harness(store=RecordingStore(fail=True))
    async with harness.http_client:
        result = await harness.service.search(
            SearchParams(q="Inception", user="dave", include_adult="true")
        )

    assert result.items
    assert "adult.example.com" not in harness.requested_hosts


@pytest.mark.anyio("asyncio")
async def test_site_selection_errors_are_distinguished() -> None:
    harness = Harness()
    async with harness.http_client:
        unknown = await harness.service.search(SearchParams(q="Inception", source="nope"))
        filtered = await harness.service.search(SearchParams(q="Inception", sources="adult"))
        selected = await harness.service.search(
            SearchParams(q="Inception", sources="gamma,beta")
        )

    assert unknown.error == "site_not_found"
    assert filtered.error == "no_sites_available"
    assert unknown.items == [] and filtered.items == []
    assert [item.source_key for item in selected.items] == ["beta", "gamma"]
    assert set(harness.requested_hosts) == {"beta.example.com", "gamma.example.com"}


@pytest.mark.anyio("asyncio")
async def test_resolve_search_sites_raises_when_registry_empty() -> None:
    harness = Harness(sites=[])
    async with harness.http_client:
        with pytest.raises(NoSitesAvailableError):
            await harness.service.resolve_search_sites([], filter_adult=True)


@pytest.mark.anyio("asyncio")
async def test_search_applies_category_filter() -> None:
    harness = Harness()
    async with harness.http_client:
        result = await harness.service.search(
            SearchParams(q="Inception", category="动作片")
        )

    assert [item.id for item in result.items] == ["b1"]


@pytest.mark.anyio("asyncio")
async def test_list_categories_uses_default_taxonomy_when_empty() -> None:
    harness = Harness(category_payload={"code": 1, "msg": "empty"})
    async with harness.http_client:
        listing = await harness.service.list_categories("alpha")

    assert listing.used_default is True
    assert [node.name for node in listing.tree][:2] == ["电影", "电视剧"]
    payload = listing.to_payload()
    assert payload["total"] == len(listing.categories)
    assert payload["categoryTree"][0]["children"][0]["name"] == "动作片"


@pytest.mark.anyio("asyncio")
async def test_list_categories_builds_tree_from_upstream() -> None:
    harness = Harness(
        category_payload={
            "class": [
                {"type_id": "1", "type_name": "Movies", "type_pid": "0"},
                {"type_id": "11", "type_name": "Action", "type_pid": "1"},
            ]
        }
    )
    async with harness.http_client:
        listing = await harness.service.list_categories("adult")

    assert listing.used_default is False
    assert listing.tree[0].id == "1"
    assert [child.id for child in listing.tree[0].children] == ["11"]


@pytest.mark.anyio("asyncio")
async def test_list_videos_reports_pagination_and_unknown_site() -> None:
    harness = Harness()
    async with harness.http_client:
        page = await harness.service.list_videos("beta", category_id="6", page=3, page_size=30)
        with pytest.raises(SiteNotFoundError):
            await harness.service.list_videos("missing")

    payload = page.to_payload()
    assert payload["source"] == "beta"
    assert payload["category"] == "6"
    assert payload["pagination"] == {
        "current_page": 3,
        "total_pages": 0,
        "total_count": 0,
        "per_page": 30,
    }
    assert payload["videos"][0]["class"] == "科幻,动作"


def test_reporter_failure_does_not_break_reporting() -> None:
    def broken_reporter(outcome: SiteOutcome) -> None:
        raise ValueError("collector down")

    settings = Settings(_env_file=None)  # type: ignore[call-arg]
    service = AggregationService(
        settings,
        cast(UpstreamClient, object()),
        SiteRegistry.from_sites(SITES),
        outcome_reporter=broken_reporter,
    )

    service._report(SiteOutcome(site_key="alpha", ok=True, item_count=1))


def test_video_params_parse_blank_values() -> None:
    params = VideoListParams.model_validate({"category": " ", "page": "", "limit": "50"})

    assert params.category is None
    assert params.page == 1
    assert params.limit == 50


@pytest.mark.anyio("asyncio")
async def test_blank_sources_selector_is_an_empty_selection() -> None:
    harness = Harness()
    async with harness.http_client:
        result = await harness.service.search(SearchParams(q="Inception", sources=" , ,"))

    assert result.error == "no_sites_available"
    assert result.items == []
    assert harness.requested_hosts == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), (" TRUE ", False), ("True", False), ("1", False), (None, False)],
)
def test_include_adult_requires_exact_opt_in(raw: str | None, expected: bool) -> None:
    params = SearchParams.model_validate({"q": "x", "include_adult": raw})

    assert params.include_adult is expected
