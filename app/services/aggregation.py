"""High level orchestration of fan-out catalog queries."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Mapping, Sequence

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ..category_tree import build_category_tree
from ..config import Settings
from ..default_categories import default_categories
from ..models import (
    CatalogItem,
    CategoryListing,
    Pagination,
    SearchResponse,
    Site,
    VideoPage,
)
from .aggregator import aggregate
from .filters import (
    AdultPreferenceStore,
    filter_by_category,
    parse_site_keys,
    resolve_adult_filter,
    resolve_user_preference,
    restrict_to_sites,
    select_sites,
)
from .site_registry import SiteRegistry
from .upstream import SiteOutcome, UpstreamClient

logger = logging.getLogger(__name__)

OutcomeReporter = Callable[[SiteOutcome], None]

SITE_NOT_FOUND = "site_not_found"
NO_SITES_AVAILABLE = "no_sites_available"


class SiteNotFoundError(LookupError):
    """The caller referenced a site key the registry does not know."""

    code = SITE_NOT_FOUND


class NoSitesAvailableError(ValueError):
    """Every candidate site was filtered out before fan-out."""

    code = NO_SITES_AVAILABLE


def _explicit_true(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value == "true"
    return False


def _coerce_bool(value: object, *, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return default


class SearchParams(BaseModel):
    """Normalized view of the query parameters accepted by search."""

    query: str | None = Field(
        default=None, validation_alias=AliasChoices("q", "query")
    )
    source: str | None = None
    sources: str | None = None
    category: str | None = None
    user_id: str | None = Field(
        default=None, validation_alias=AliasChoices("user", "userId", "user_id")
    )
    include_adult: bool = Field(
        default=False,
        validation_alias=AliasChoices("include_adult", "includeAdult"),
    )
    aggregate: bool = True

    @classmethod
    def from_request(
        cls, params: Mapping[str, str], *, user_id: str | None = None
    ) -> "SearchParams":
        payload = dict(params)
        if user_id and not payload.get("user"):
            payload["user"] = user_id
        return cls.model_validate(payload)

    @field_validator("query", "source", "sources", "category", "user_id", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("include_adult", mode="before")
    @classmethod
    def _parse_include_adult(cls, value: object) -> bool:
        # Only an explicit "true" opts in to adult sites.
        return _explicit_true(value)

    @field_validator("aggregate", mode="before")
    @classmethod
    def _parse_aggregate(cls, value: object) -> bool:
        return _coerce_bool(value, default=True)

    @property
    def site_keys(self) -> list[str]:
        return parse_site_keys(self.source, self.sources)


class VideoListParams(BaseModel):
    """Query parameters of a single-site browse request."""

    category: str | None = None
    page: int | None = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1, le=200)

    @field_validator("category", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("page", "limit", mode="before")
    @classmethod
    def _blank_as_default(cls, value: object) -> object:
        if value == "":
            return None
        return value

    @field_validator("page", mode="after")
    @classmethod
    def _default_page(cls, value: int | None) -> int:
        return value or 1


class AggregationService:
    """Fans catalog queries out to the selected sites and merges the answers."""

    def __init__(
        self,
        settings: Settings,
        upstream: UpstreamClient,
        registry: SiteRegistry,
        user_settings: AdultPreferenceStore | None = None,
        *,
        outcome_reporter: OutcomeReporter | None = None,
    ):
        self._settings = settings
        self._upstream = upstream
        self._registry = registry
        self._user_settings = user_settings
        self._outcome_reporter = outcome_reporter

    async def search(self, params: SearchParams) -> SearchResponse:
        """Run the full search pipeline for one request.

        A blank query short-circuits before any upstream is contacted. Unknown
        or fully filtered site selections come back as an empty response with
        an error code rather than an exception.
        """

        query = (params.query or "").strip()
        if not query:
            return SearchResponse()

        filter_adult = await self.resolve_adult_policy(
            params.user_id, params.include_adult
        )
        try:
            sites = await self.resolve_search_sites(
                self._requested_site_keys(params), filter_adult=filter_adult
            )
        except (SiteNotFoundError, NoSitesAvailableError) as exc:
            logger.info("Search for %r aborted: %s", query, exc)
            return SearchResponse(error=exc.code)

        items, _ = await self.fan_out_search(query, sites)
        items = restrict_to_sites(items, sites)
        items = filter_by_category(items, params.category)
        return SearchResponse(items=items, groups=aggregate(items, query))

    @staticmethod
    def _requested_site_keys(params: SearchParams) -> list[str]:
        keys = params.site_keys
        if params.sources and not keys:
            raise NoSitesAvailableError(
                f"No usable site keys in sources={params.sources!r}"
            )
        return keys

    async def resolve_adult_policy(
        self, user_id: str | None, include_adult: bool
    ) -> bool:
        preference = await resolve_user_preference(self._user_settings, user_id)
        return resolve_adult_filter(preference, include_adult)

    async def available_sites(
        self, *, user_id: str | None = None, include_adult: bool = False
    ) -> list[Site]:
        filter_adult = await self.resolve_adult_policy(user_id, include_adult)
        return await self._registry.get_available_sites(filter_adult)

    async def resolve_search_sites(
        self, requested_keys: Sequence[str], *, filter_adult: bool
    ) -> list[Site]:
        """Return the sites a search fans out to, in registry order."""

        available = await self._registry.get_available_sites(filter_adult)
        selected = select_sites(available, requested_keys)
        if selected:
            return selected
        if requested_keys:
            known = {
                site.key
                for site in await self._registry.get_available_sites(False)
            }
            if not any(key in known for key in requested_keys):
                raise SiteNotFoundError(
                    f"Unknown site key(s): {', '.join(requested_keys)}"
                )
        raise NoSitesAvailableError("No upstream sites available for this request")

    async def fan_out_search(
        self, query: str, sites: Sequence[Site]
    ) -> tuple[list[CatalogItem], list[SiteOutcome]]:
        """Query every site concurrently and concatenate in site order.

        Each site owns its own timeout inside the adapter, so the wait is
        bounded by the slowest site rather than the sum. A site that fails
        for any reason contributes no items.
        """

        results = await asyncio.gather(
            *(self._upstream.search(site, query) for site in sites),
            return_exceptions=True,
        )

        items: list[CatalogItem] = []
        outcomes: list[SiteOutcome] = []
        for site, result in zip(sites, results):
            if isinstance(result, Exception):
                outcome = SiteOutcome(
                    site_key=site.key,
                    ok=False,
                    error=f"{result.__class__.__name__}: {result}",
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                site_items, outcome = result
                items.extend(site_items)
            outcomes.append(outcome)
            self._report(outcome)

        if not items:
            logger.info("Search for %r returned no results from %s sites", query, len(sites))
        return items, outcomes

    async def list_categories(self, site_key: str) -> CategoryListing:
        """Return the flat categories and tree of one site."""

        site = await self._require_site(site_key)
        categories, outcome = await self._upstream.fetch_categories(site)
        self._report(outcome)

        used_default = not categories
        if used_default:
            categories = default_categories()
        return CategoryListing(
            site=site,
            categories=categories,
            tree=build_category_tree(categories),
            used_default=used_default,
        )

    async def list_videos(
        self,
        site_key: str,
        *,
        category_id: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> VideoPage:
        """Return one browse page of a site with its pagination block."""

        site = await self._require_site(site_key)
        per_page = page_size or self._settings.default_page_size
        listing, outcome = await self._upstream.fetch_videos(
            site, category_id=category_id, page=page
        )
        self._report(outcome)
        return VideoPage(
            site=site,
            category=category_id or "",
            items=listing.items,
            pagination=Pagination(
                current_page=page,
                total_pages=listing.page_count,
                total_count=listing.total,
                per_page=per_page,
            ),
        )

    async def _require_site(self, site_key: str) -> Site:
        key = (site_key or "").strip()
        site = await self._registry.find_site(key) if key else None
        if site is None:
            raise SiteNotFoundError(f"Unknown site key: {site_key}")
        return site

    def _report(self, outcome: SiteOutcome) -> None:
        if outcome.ok:
            logger.info(
                "Site %s returned %s entries in %.2fs",
                outcome.site_key,
                outcome.item_count,
                outcome.elapsed,
            )
        else:
            logger.warning(
                "Site %s failed after %.2fs: %s",
                outcome.site_key,
                outcome.elapsed,
                outcome.error,
            )
        if self._outcome_reporter is None:
            return
        try:
            self._outcome_reporter(outcome)
        except Exception:
            logger.exception("Outcome reporter failed for %s", outcome.site_key)
