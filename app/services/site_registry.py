"""Registry of configured upstream sites."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from ..config import Settings
from ..models import Site

logger = logging.getLogger(__name__)


class SiteConfigEntry(BaseModel):
    """One site as written in the configuration file."""

    key: str = ""
    name: str = ""
    api: str = Field(validation_alias=AliasChoices("api", "base_api_url", "baseApiUrl"))
    detail: str | None = None
    is_adult: bool = Field(default=False, validation_alias=AliasChoices("is_adult", "isAdult"))
    disabled: bool = False

    def to_site(self) -> Site:
        return Site(
            key=self.key,
            name=self.name or self.key,
            api=self.api.strip(),
            is_adult=self.is_adult,
            detail=self.detail,
        )


def parse_site_config(raw: Any) -> list[SiteConfigEntry]:
    """Parse the ``api_site`` mapping (or a plain list) into entries.

    Entries that fail validation are logged and skipped so one bad site does
    not take the whole registry down. Later duplicates of a key are ignored.
    """

    if isinstance(raw, Mapping) and "api_site" in raw:
        raw = raw["api_site"]

    candidates: list[tuple[str | None, Any]]
    if isinstance(raw, Mapping):
        candidates = [(str(key), value) for key, value in raw.items()]
    elif isinstance(raw, list):
        candidates = [(None, value) for value in raw]
    else:
        return []

    entries: list[SiteConfigEntry] = []
    seen: set[str] = set()
    for key, value in candidates:
        if not isinstance(value, Mapping):
            logger.warning("Ignoring site %s: configuration must be an object", key)
            continue
        data = dict(value)
        if key is not None:
            data["key"] = key
        try:
            entry = SiteConfigEntry.model_validate(data)
        except ValidationError as exc:
            logger.warning("Ignoring invalid site %s: %s", key or data.get("key"), exc)
            continue
        entry.key = entry.key.strip()
        if not entry.key or not entry.api.strip():
            logger.warning("Ignoring site without key or api url: %s", data)
            continue
        if entry.key in seen:
            continue
        seen.add(entry.key)
        entries.append(entry)
    return entries


class SiteRegistry:
    """Serves the enabled sites, optionally without adult-flagged ones."""

    def __init__(self, entries: Iterable[SiteConfigEntry]):
        self._entries = tuple(entries)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SiteRegistry":
        entries = parse_site_config(settings.load_site_config())
        logger.info("Loaded %s upstream sites", len(entries))
        return cls(entries)

    @classmethod
    def from_sites(cls, sites: Iterable[Site]) -> "SiteRegistry":
        return cls(
            SiteConfigEntry(
                key=site.key,
                name=site.name,
                api=site.api,
                detail=site.detail,
                is_adult=site.is_adult,
            )
            for site in sites
        )

    async def get_available_sites(self, filter_adult: bool = True) -> list[Site]:
        """Return enabled sites in configuration order."""

        return [
            entry.to_site()
            for entry in self._entries
            if not entry.disabled and not (filter_adult and entry.is_adult)
        ]

    async def find_site(self, key: str) -> Site | None:
        """Return the enabled site called ``key`` regardless of its adult flag."""

        for site in await self.get_available_sites(filter_adult=False):
            if site.key == key:
                return site
        return None
