"""Client for MacCMS-style upstream catalog APIs."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings
from ..default_categories import UNKNOWN_CATEGORY_NAME
from ..models import CatalogItem, CategoryNode, Site
from ..utils import (
    clean_html_tags,
    coerce_int,
    coerce_positive_int,
    coerce_str,
    collapse_whitespace,
    extract_year,
    unique_in_order,
)

logger = logging.getLogger(__name__)

PLAY_GROUP_SEPARATOR = "$$$"
M3U8_RE = re.compile(r"\$(https?://[^\"'\s]+?\.m3u8)")


class UpstreamUnavailable(Exception):
    """Raised internally when a site cannot produce a usable payload."""


@dataclass(slots=True)
class SiteOutcome:
    """Structured record describing how one site call went."""

    site_key: str
    ok: bool
    item_count: int = 0
    elapsed: float = 0.0
    error: str | None = None


@dataclass(slots=True)
class VideoListing:
    """Items parsed from one ``videolist`` page and its paging counters."""

    items: list[CatalogItem] = field(default_factory=list)
    page_count: int = 0
    total: int = 0


def extract_episodes(play_url: Any) -> list[str]:
    """Return the playlist URLs of the richest play group in ``play_url``.

    The play field packs several groups separated by ``$$$``. The group with
    the most ``$<url>.m3u8`` segments wins (the first one on ties). Each URL
    loses its leading ``$`` and anything from a trailing ``(`` annotation,
    then duplicates are dropped keeping first-seen order.
    """

    if not isinstance(play_url, str) or not play_url:
        return []

    best: list[str] = []
    for group in play_url.split(PLAY_GROUP_SEPARATOR):
        matches = M3U8_RE.findall(group)
        if len(matches) > len(best):
            best = matches

    cleaned: list[str] = []
    for link in best:
        paren_index = link.find("(")
        if paren_index > 0:
            link = link[:paren_index]
        cleaned.append(link)
    return unique_in_order(cleaned)


def parse_video_item(raw: Any, site: Site) -> CatalogItem | None:
    """Map one upstream ``list`` entry onto the canonical item shape."""

    if not isinstance(raw, dict):
        return None
    item_id = coerce_str(raw.get("vod_id"))
    title = collapse_whitespace(coerce_str(raw.get("vod_name")))
    if not item_id and not title:
        return None

    type_label = coerce_str(raw.get("type_name")) or None
    return CatalogItem(
        id=item_id,
        title=title,
        poster_url=coerce_str(raw.get("vod_pic")),
        episode_urls=extract_episodes(raw.get("vod_play_url")),
        source_key=site.key,
        source_name=site.name,
        category_label=coerce_str(raw.get("vod_class")),
        year=extract_year(raw.get("vod_year")),
        description=clean_html_tags(coerce_str(raw.get("vod_content"))),
        type_label=type_label,
        external_rating_id=coerce_positive_int(raw.get("vod_douban_id")),
    )


def parse_video_items(entries: Any, site: Site) -> list[CatalogItem]:
    if not isinstance(entries, list):
        return []
    items: list[CatalogItem] = []
    for entry in entries:
        item = parse_video_item(entry, site)
        if item is not None:
            items.append(item)
    return items


def parse_category_entries(payload: Any) -> list[CategoryNode]:
    """Return categories from the ``class`` array, falling back to ``list``."""

    if not isinstance(payload, dict):
        return []
    entries = payload.get("class")
    if not isinstance(entries, list):
        entries = payload.get("list")
    if not isinstance(entries, list):
        return []

    categories: list[CategoryNode] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        type_id = coerce_str(entry.get("type_id"))
        type_name = coerce_str(entry.get("type_name"))
        category_id = type_id or type_name
        if not category_id:
            continue
        categories.append(
            CategoryNode(
                id=category_id,
                name=type_name or UNKNOWN_CATEGORY_NAME,
                parent_id=coerce_str(entry.get("type_pid")) or None,
            )
        )
    return categories


class UpstreamClient:
    """Issues one bounded request per site call and never raises on failure."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._settings.upstream_user_agent,
            "Accept": "application/json",
        }

    async def fetch_categories(
        self, site: Site
    ) -> tuple[list[CategoryNode], SiteOutcome]:
        """Return the flat category list published by ``site``."""

        started = time.monotonic()
        try:
            payload = await self._get_json(
                site,
                {"ac": "list"},
                timeout=self._settings.category_timeout_seconds,
            )
        except UpstreamUnavailable as exc:
            return [], self._failure(site, started, exc)

        categories = parse_category_entries(payload)
        return categories, self._success(site, started, len(categories))

    async def fetch_videos(
        self,
        site: Site,
        *,
        category_id: str | None = None,
        page: int = 1,
    ) -> tuple[VideoListing, SiteOutcome]:
        """Return one browse page of ``site``, optionally within a category."""

        params: dict[str, Any] = {"ac": "videolist", "pg": page}
        if category_id and category_id != "all":
            params["t"] = category_id

        started = time.monotonic()
        try:
            payload = await self._get_json(
                site, params, timeout=self._settings.video_timeout_seconds
            )
            listing = self._parse_listing(payload, site)
        except UpstreamUnavailable as exc:
            return VideoListing(), self._failure(site, started, exc)
        return listing, self._success(site, started, len(listing.items))

    async def search(
        self, site: Site, query: str
    ) -> tuple[list[CatalogItem], SiteOutcome]:
        """Search ``site`` for ``query``.

        The first result page is mandatory. When ``SEARCH_MAX_PAGES`` allows
        it, further pages are fetched concurrently and appended in page order;
        a failing extra page only loses its own items.
        """

        started = time.monotonic()
        try:
            first = self._parse_listing(
                await self._get_json(
                    site,
                    {"ac": "videolist", "wd": query},
                    timeout=self._settings.video_timeout_seconds,
                ),
                site,
            )
        except UpstreamUnavailable as exc:
            return [], self._failure(site, started, exc)

        items = list(first.items)
        last_page = min(first.page_count, self._settings.search_max_pages)
        if last_page > 1:
            pages = await asyncio.gather(
                *(
                    self._search_page(site, query, page)
                    for page in range(2, last_page + 1)
                )
            )
            for page_items in pages:
                items.extend(page_items)
        return items, self._success(site, started, len(items))

    async def _search_page(self, site: Site, query: str, page: int) -> list[CatalogItem]:
        try:
            payload = await self._get_json(
                site,
                {"ac": "videolist", "wd": query, "pg": page},
                timeout=self._settings.video_timeout_seconds,
            )
            return self._parse_listing(payload, site).items
        except UpstreamUnavailable as exc:
            logger.info(
                "Search page %s of %s skipped: %s", page, site.key, exc
            )
            return []

    async def _get_json(
        self, site: Site, params: dict[str, Any], *, timeout: float
    ) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    site.api,
                    params=params,
                    headers=self._headers(),
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(f"Timeout after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(
                f"{exc.__class__.__name__}: {exc}"
            ) from exc

        if not response.is_success:
            raise UpstreamUnavailable(f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Response was not valid JSON") from exc

    @staticmethod
    def _parse_listing(payload: Any, site: Site) -> VideoListing:
        if not isinstance(payload, dict) or not isinstance(payload.get("list"), list):
            raise UpstreamUnavailable("Unexpected response structure")
        return VideoListing(
            items=parse_video_items(payload["list"], site),
            page_count=coerce_int(payload.get("pagecount")),
            total=coerce_int(payload.get("total")),
        )

    @staticmethod
    def _success(site: Site, started: float, count: int) -> SiteOutcome:
        return SiteOutcome(
            site_key=site.key,
            ok=True,
            item_count=count,
            elapsed=time.monotonic() - started,
        )

    @staticmethod
    def _failure(site: Site, started: float, exc: Exception) -> SiteOutcome:
        logger.warning("Upstream %s unavailable: %s", site.key, exc)
        return SiteOutcome(
            site_key=site.key,
            ok=False,
            elapsed=time.monotonic() - started,
            error=str(exc),
        )
