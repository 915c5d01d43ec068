"""Pydantic models describing canonical catalog payloads."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .utils import UNKNOWN_YEAR, strip_spaces

MediaType = Literal["movie", "tv"]


class Site(BaseModel):
    """One upstream catalog API as supplied by the site registry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    name: str
    api: str = Field(validation_alias=AliasChoices("api", "base_api_url", "baseApiUrl"))
    is_adult: bool = False
    detail: str | None = None


class CatalogItem(BaseModel):
    """Canonical search or browse result, independent of the upstream schema."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    poster_url: str = Field(default="", alias="poster")
    episode_urls: list[str] = Field(default_factory=list, alias="episodes")
    source_key: str = Field(alias="source")
    source_name: str = ""
    category_label: str = Field(default="", alias="class")
    year: str = UNKNOWN_YEAR
    description: str = Field(default="", alias="desc")
    type_label: str | None = Field(default=None, alias="type_name")
    external_rating_id: int | None = Field(default=None, alias="douban_id")

    @property
    def media_type(self) -> MediaType:
        """Single-episode entries are movies, everything else is a series."""

        return "movie" if len(self.episode_urls) == 1 else "tv"

    @property
    def normalized_title(self) -> str:
        return strip_spaces(self.title)

    @property
    def category_text(self) -> str:
        """Return the category field used for category filtering."""

        return self.category_label or self.type_label or ""

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(by_alias=True)


class CategoryNode(BaseModel):
    """Flat category entry carrying a parent pointer."""

    id: str
    name: str
    parent_id: str | None = None


class CategoryTreeNode(CategoryNode):
    """Category entry with its ordered children attached."""

    children: list["CategoryTreeNode"] = Field(default_factory=list)


class AggregatedGroup(BaseModel):
    """Items from different sites that describe the same logical title."""

    key: str
    media_type: MediaType
    items: list[CatalogItem] = Field(default_factory=list)

    @property
    def first(self) -> CatalogItem:
        return self.items[0]

    def to_payload(self) -> dict[str, object]:
        return {
            "key": self.key,
            "type": self.media_type,
            "title": self.first.title,
            "year": self.first.year,
            "sources": [item.source_key for item in self.items],
            "items": [item.to_payload() for item in self.items],
        }


class Pagination(BaseModel):
    """Paging information attached to a browse response."""

    current_page: int
    total_pages: int = 0
    total_count: int = 0
    per_page: int


class VideoPage(BaseModel):
    """A page of browse results for a single site."""

    site: Site
    category: str = ""
    items: list[CatalogItem] = Field(default_factory=list)
    pagination: Pagination

    def to_payload(self) -> dict[str, object]:
        return {
            "source": self.site.key,
            "source_name": self.site.name,
            "category": self.category,
            "videos": [item.to_payload() for item in self.items],
            "pagination": self.pagination.model_dump(),
        }


class CategoryListing(BaseModel):
    """Flat categories of one site together with the reconstructed tree."""

    site: Site
    categories: list[CategoryNode] = Field(default_factory=list)
    tree: list[CategoryTreeNode] = Field(default_factory=list)
    used_default: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "source": self.site.key,
            "source_name": self.site.name,
            "categories": [category.model_dump() for category in self.categories],
            "categoryTree": [node.model_dump() for node in self.tree],
            "total": len(self.categories),
        }


class SearchResponse(BaseModel):
    """Outcome of a fan-out search across the selected sites."""

    items: list[CatalogItem] = Field(default_factory=list)
    groups: list[AggregatedGroup] = Field(default_factory=list)
    error: str | None = None

    def is_empty(self) -> bool:
        return not self.items

    def to_payload(self, *, aggregate: bool = False) -> dict[str, object]:
        payload: dict[str, object] = {
            "regular_results": [item.to_payload() for item in self.items],
            # Adult sites are excluded before fan-out, so nothing is ever
            # classified as adult at the item level.
            "adult_results": [],
        }
        if aggregate:
            payload["aggregated"] = [group.to_payload() for group in self.groups]
        if self.error:
            payload["error"] = self.error
        return payload
