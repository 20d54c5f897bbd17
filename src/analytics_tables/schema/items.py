"""The closed set of metadata items that produce dynamic columns."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Union

from analytics_tables.metadata.model import (
    Category,
    DataElement,
    LegendSet,
    TrackedEntityAttribute,
)


@dataclass(frozen=True)
class CategoryItem:
    category: Category


@dataclass(frozen=True)
class DataElementItem:
    data_element: DataElement

    @property
    def uid(self) -> str:
        return self.data_element.uid


@dataclass(frozen=True)
class AttributeItem:
    attribute: TrackedEntityAttribute

    @property
    def uid(self) -> str:
        return self.attribute.uid


@dataclass(frozen=True)
class LegendSetItem:
    source: Union[DataElementItem, AttributeItem]
    legend_set: LegendSet

    @property
    def column_name(self) -> str:
        return f"{self.source.uid}_{self.legend_set.uid}"


MetadataItem = Union[CategoryItem, DataElementItem, AttributeItem, LegendSetItem]


def legend_items(source: Union[DataElementItem, AttributeItem]) -> list[LegendSetItem]:
    value = source.data_element if isinstance(source, DataElementItem) else source.attribute
    return [LegendSetItem(source, ls) for ls in value.legend_sets]
