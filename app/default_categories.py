"""Built-in category taxonomy used when a site publishes none."""

from __future__ import annotations

from dataclasses import dataclass

from .models import CategoryNode


ROOT_PARENT_ID = "0"
UNKNOWN_CATEGORY_NAME = "未知分类"


@dataclass(frozen=True)
class DefaultCategoryDefinition:
    """Describes one entry of the fallback two-level genre taxonomy."""

    id: str
    name: str
    parent_id: str = ROOT_PARENT_ID

    def to_node(self) -> CategoryNode:
        return CategoryNode(id=self.id, name=self.name, parent_id=self.parent_id)


DEFAULT_CATEGORIES: tuple[DefaultCategoryDefinition, ...] = (
    DefaultCategoryDefinition(id="1", name="电影"),
    DefaultCategoryDefinition(id="11", name="动作片", parent_id="1"),
    DefaultCategoryDefinition(id="12", name="喜剧片", parent_id="1"),
    DefaultCategoryDefinition(id="13", name="爱情片", parent_id="1"),
    DefaultCategoryDefinition(id="14", name="科幻片", parent_id="1"),
    DefaultCategoryDefinition(id="15", name="恐怖片", parent_id="1"),
    DefaultCategoryDefinition(id="16", name="战争片", parent_id="1"),
    DefaultCategoryDefinition(id="2", name="电视剧"),
    DefaultCategoryDefinition(id="21", name="国产剧", parent_id="2"),
    DefaultCategoryDefinition(id="22", name="美剧", parent_id="2"),
    DefaultCategoryDefinition(id="23", name="韩剧", parent_id="2"),
    DefaultCategoryDefinition(id="24", name="日剧", parent_id="2"),
    DefaultCategoryDefinition(id="25", name="港台剧", parent_id="2"),
    DefaultCategoryDefinition(id="3", name="综艺"),
    DefaultCategoryDefinition(id="31", name="真人秀", parent_id="3"),
    DefaultCategoryDefinition(id="32", name="脱口秀", parent_id="3"),
    DefaultCategoryDefinition(id="33", name="游戏竞技", parent_id="3"),
    DefaultCategoryDefinition(id="4", name="动漫"),
    DefaultCategoryDefinition(id="41", name="国产动漫", parent_id="4"),
    DefaultCategoryDefinition(id="42", name="日本动漫", parent_id="4"),
    DefaultCategoryDefinition(id="43", name="欧美动漫", parent_id="4"),
    DefaultCategoryDefinition(id="5", name="纪录片"),
    DefaultCategoryDefinition(id="6", name="体育"),
)


def default_categories() -> list[CategoryNode]:
    """Return fresh category nodes for the fallback taxonomy."""

    return [definition.to_node() for definition in DEFAULT_CATEGORIES]
