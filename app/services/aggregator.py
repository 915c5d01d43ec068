"""Group per-site hits into logical titles and order the groups."""

from __future__ import annotations

from functools import cmp_to_key
from typing import Iterable

from ..models import AggregatedGroup, CatalogItem
from ..utils import UNKNOWN_YEAR, strip_spaces


def group_key(item: CatalogItem) -> str:
    """Return ``<space-stripped title>-<year>-<movie|tv>`` for ``item``."""

    year = item.year or UNKNOWN_YEAR
    return f"{item.normalized_title}-{year}-{item.media_type}"


def _compare_groups(
    left: AggregatedGroup, right: AggregatedGroup, needle: str
) -> int:
    left_hit = needle in left.first.normalized_title
    right_hit = needle in right.first.normalized_title
    if left_hit != right_hit:
        return -1 if left_hit else 1

    left_year = left.first.year or UNKNOWN_YEAR
    right_year = right.first.year or UNKNOWN_YEAR
    if left_year == right_year:
        return (left.key > right.key) - (left.key < right.key)
    if left_year == UNKNOWN_YEAR:
        return 1
    if right_year == UNKNOWN_YEAR:
        return -1
    return -1 if left_year > right_year else 1


def aggregate(items: Iterable[CatalogItem], query: str | None) -> list[AggregatedGroup]:
    """Cluster ``items`` by :func:`group_key` and order the clusters.

    Members keep their input order. Groups whose lead title contains the
    query (spaces ignored) come first; then equal years sort by key, known
    years beat ``"unknown"`` and newer years beat older ones. The sort is
    stable so ties keep first-seen order.
    """

    groups: dict[str, AggregatedGroup] = {}
    for item in items:
        key = group_key(item)
        group = groups.get(key)
        if group is None:
            group = AggregatedGroup(key=key, media_type=item.media_type, items=[])
            groups[key] = group
        group.items.append(item)

    needle = strip_spaces((query or "").strip())
    return sorted(
        groups.values(),
        key=cmp_to_key(lambda left, right: _compare_groups(left, right, needle)),
    )
