from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class ValueType(Enum):
    TEXT = "TEXT"
    LONG_TEXT = "LONG_TEXT"
    MULTI_TEXT = "MULTI_TEXT"
    LETTER = "LETTER"
    PHONE_NUMBER = "PHONE_NUMBER"
    EMAIL = "EMAIL"
    URL = "URL"
    USERNAME = "USERNAME"
    TIME = "TIME"
    BOOLEAN = "BOOLEAN"
    TRUE_ONLY = "TRUE_ONLY"
    DATE = "DATE"
    DATETIME = "DATETIME"
    AGE = "AGE"
    NUMBER = "NUMBER"
    UNIT_INTERVAL = "UNIT_INTERVAL"
    PERCENTAGE = "PERCENTAGE"
    INTEGER = "INTEGER"
    INTEGER_POSITIVE = "INTEGER_POSITIVE"
    INTEGER_NEGATIVE = "INTEGER_NEGATIVE"
    INTEGER_ZERO_OR_POSITIVE = "INTEGER_ZERO_OR_POSITIVE"
    COORDINATE = "COORDINATE"
    GEOJSON = "GEOJSON"
    ORGANISATION_UNIT = "ORGANISATION_UNIT"
    FILE_RESOURCE = "FILE_RESOURCE"
    IMAGE = "IMAGE"
    TRACKER_ASSOCIATE = "TRACKER_ASSOCIATE"
    REFERENCE = "REFERENCE"

    @classmethod
    def parse(cls, value: str | None) -> Optional["ValueType"]:
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_TYPES

    @property
    def is_decimal(self) -> bool:
        return self in (ValueType.NUMBER, ValueType.UNIT_INTERVAL, ValueType.PERCENTAGE)

    @property
    def is_boolean(self) -> bool:
        return self in (ValueType.BOOLEAN, ValueType.TRUE_ONLY)

    @property
    def is_date(self) -> bool:
        return self in (ValueType.DATE, ValueType.DATETIME, ValueType.AGE)

    @property
    def is_geo(self) -> bool:
        return self in (ValueType.COORDINATE, ValueType.GEOJSON)

    @property
    def is_organisation_unit(self) -> bool:
        return self is ValueType.ORGANISATION_UNIT


_INTEGER_TYPES = frozenset(
    {
        ValueType.INTEGER,
        ValueType.INTEGER_POSITIVE,
        ValueType.INTEGER_NEGATIVE,
        ValueType.INTEGER_ZERO_OR_POSITIVE,
    }
)


@dataclass(frozen=True)
class LegendSet:
    id: int
    uid: str
    name: str = ""


@dataclass(frozen=True)
class Category:
    id: int
    uid: str
    name: str = ""
    data_dimension: bool = True
    created: Optional[datetime] = None


@dataclass(frozen=True)
class CategoryCombo:
    uid: str
    categories: Tuple[Category, ...] = ()
    is_default: bool = False


@dataclass(frozen=True)
class DataElement:
    id: int
    uid: str
    value_type: Optional[ValueType]
    name: str = ""
    legend_sets: Tuple[LegendSet, ...] = ()
    has_option_set: bool = False
    skip_analytics: bool = False
    deleted: bool = False
    created: Optional[datetime] = None
    raw_value_type: Optional[str] = None


@dataclass(frozen=True)
class TrackedEntityAttribute:
    id: int
    uid: str
    value_type: Optional[ValueType]
    name: str = ""
    legend_sets: Tuple[LegendSet, ...] = ()
    has_option_set: bool = False
    confidential: bool = False
    deleted: bool = False
    created: Optional[datetime] = None
    raw_value_type: Optional[str] = None


@dataclass(frozen=True)
class OrganisationUnitLevel:
    level: int
    name: str = ""


@dataclass(frozen=True)
class OrganisationUnitGroupSet:
    id: int
    uid: str
    name: str = ""
    created: Optional[datetime] = None


@dataclass(frozen=True)
class TrackedEntityType:
    id: int
    uid: str
    name: str = ""
    attributes: Tuple[TrackedEntityAttribute, ...] = ()

    def analytics_attributes(self) -> Tuple[TrackedEntityAttribute, ...]:
        return tuple(a for a in self.attributes if not a.confidential and not a.deleted)


@dataclass(frozen=True)
class Program:
    id: int
    uid: str
    name: str = ""
    registration: bool = True
    category_combo: Optional[CategoryCombo] = None
    tracked_entity_type: Optional[TrackedEntityType] = None
    data_elements: Tuple[DataElement, ...] = ()
    attributes: Tuple[TrackedEntityAttribute, ...] = field(default_factory=tuple)

    def has_non_default_category_combo(self) -> bool:
        return self.category_combo is not None and not self.category_combo.is_default

    def analytics_data_elements(self) -> Tuple[DataElement, ...]:
        return tuple(
            de for de in self.data_elements if not de.skip_analytics and not de.deleted
        )

    def analytics_attributes(self) -> Tuple[TrackedEntityAttribute, ...]:
        return tuple(a for a in self.attributes if not a.confidential and not a.deleted)
