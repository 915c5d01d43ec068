"""Site-selection, adult-content and category policies applied to results."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence

from ..models import CatalogItem, Site

logger = logging.getLogger(__name__)

CATEGORY_SUFFIX = "片"
ALL_CATEGORIES = "all"


class AdultPreferenceStore(Protocol):
    async def get_adult_content_filter_preference(self, user_id: str) -> bool | None:
        ...


def resolve_adult_filter(preference: bool | None, include_adult: bool) -> bool:
    """Return whether adult sites must be excluded for this call.

    Filtering is the default. It is lifted only when the user's stored
    preference is explicitly ``False`` and the caller explicitly asks for
    adult sites in this request.
    """

    user_wants_filter = preference is not False
    return user_wants_filter or not include_adult


async def resolve_user_preference(
    store: AdultPreferenceStore | None, user_id: str | None
) -> bool | None:
    """Look up the stored preference; lookup failures read as "filter"."""

    if not user_id or store is None:
        return None
    try:
        return await store.get_adult_content_filter_preference(user_id)
    except Exception:
        logger.warning(
            "Could not resolve adult content preference for %s; filtering",
            user_id,
            exc_info=True,
        )
        return None


def parse_site_keys(
    source: str | None = None, sources: str | Sequence[str] | None = None
) -> list[str]:
    """Normalise the single-key and comma-separated multi-key selectors.

    ``sources`` takes precedence over ``source`` when both are present.
    """

    if isinstance(sources, str):
        raw_values: Iterable[str] = sources.split(",")
    elif sources:
        raw_values = [str(value) for value in sources]
    else:
        raw_values = []

    keys = [value.strip() for value in raw_values if value and value.strip()]
    if not keys and source and source.strip():
        keys = [source.strip()]

    unique: list[str] = []
    for key in keys:
        if key not in unique:
            unique.append(key)
    return unique


def select_sites(available: Sequence[Site], requested_keys: Sequence[str]) -> list[Site]:
    """Keep the requested sites, preserving registry order."""

    if not requested_keys:
        return list(available)
    wanted = set(requested_keys)
    return [site for site in available if site.key in wanted]


def restrict_to_sites(items: Iterable[CatalogItem], sites: Iterable[Site]) -> list[CatalogItem]:
    """Drop items whose source is outside the selected site set."""

    allowed = {site.key for site in sites}
    return [item for item in items if item.source_key in allowed]


def _matches_label(category: str, label: str) -> bool:
    if category == label or label in category:
        return True
    return label in (part.strip() for part in category.split(","))


def matches_category(category: str, label: str) -> bool:
    """Return whether an item category field satisfies a category label.

    The label matches on equality, substring, or membership of the
    comma-separated field. A label ending in ``片`` is retried without it.
    """

    if _matches_label(category, label):
        return True
    simple = label[: -len(CATEGORY_SUFFIX)] if label.endswith(CATEGORY_SUFFIX) else label
    return simple != label and _matches_label(category, simple)


def normalize_category_label(label: str | None) -> str | None:
    if label is None:
        return None
    cleaned = label.strip()
    if not cleaned or cleaned == ALL_CATEGORIES:
        return None
    return cleaned


def filter_by_category(items: Iterable[CatalogItem], label: str | None) -> list[CatalogItem]:
    """Keep items whose category matches ``label``; no label keeps everything."""

    materialized = list(items)
    cleaned = normalize_category_label(label)
    if cleaned is None:
        return materialized
    kept = [item for item in materialized if matches_category(item.category_text, cleaned)]
    logger.info(
        "Category filter %s kept %s/%s results", cleaned, len(kept), len(materialized)
    )
    return kept
