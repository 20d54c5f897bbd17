from __future__ import annotations
from typing import List, Optional

import structlog

from analytics_tables.core.types import Column, ColumnKind, DataType, IndexHint
from analytics_tables.metadata.model import ValueType
from analytics_tables.schema.items import (
    AttributeItem,
    CategoryItem,
    DataElementItem,
    LegendSetItem,
    MetadataItem,
)
from analytics_tables.sql.builder import SqlBuilder
from analytics_tables.sql.template import Fragment, SqlTemplate, Uid

# matched case-insensitively, so the exponent marker may be e or E
NUMERIC_LENIENT_REGEXP = r"^(-?[0-9]+)(\.[0-9]+)?(e(-|\+)?[0-9]+)?$"
DATE_REGEXP = (
    r"^[0-9]{4}-[0-9]{2}-[0-9]{2}(\s|T)?(([0-9]{2}:)([0-9]{2}:)?([0-9]{2}))?"
    r"(|.([0-9]{3})|.([0-9]{3})Z)?$"
)

OU_NAME_COL_SUFFIX = "_name"
OU_GEOMETRY_COL_SUFFIX = "_geom"

ATTRIBUTE_VALUE = SqlTemplate(
    "attribute_value",
    "(select ${expression} from trackedentityattributevalue teav "
    "where teav.trackedentityid=${owner}.trackedentityid "
    "and teav.trackedentityattributeid=${attribute_id})",
)
ORG_UNIT_LOOKUP = SqlTemplate(
    "org_unit_lookup",
    "(select oun.${field} from organisationunit oun where oun.uid = ${value})",
)
LEGEND_LOOKUP = SqlTemplate(
    "legend_lookup",
    "(select l.uid from maplegend l where l.maplegendsetid=${legend_set_id} "
    "and l.startvalue <= ${value} and l.endvalue > ${value} limit 1)",
)
CATEGORY_VALUE = SqlTemplate("category_value", "acs.${category}")

_TEXT_TYPES = frozenset(
    {
        ValueType.TEXT,
        ValueType.LONG_TEXT,
        ValueType.MULTI_TEXT,
        ValueType.LETTER,
        ValueType.PHONE_NUMBER,
        ValueType.EMAIL,
        ValueType.URL,
        ValueType.USERNAME,
        ValueType.TIME,
        ValueType.FILE_RESOURCE,
        ValueType.IMAGE,
    }
)

log = structlog.get_logger(mod="schema.visitor")


class ColumnVisitor:
    """
    Turns one metadata item into the dynamic columns it contributes.

    ``owner`` is the alias of the row holding ``trackedentityid`` in the
    insert-select the columns end up in (``pi`` for events, ``tei`` for
    enrollments). Items with a value type that has no column mapping yield
    nothing.
    """

    def __init__(
        self,
        builder: SqlBuilder,
        spatial: bool,
        owner: str,
        category_index: IndexHint = IndexHint.NONE,
    ):
        self.builder = builder
        self.spatial = spatial
        self.owner = Fragment(owner)
        self.category_index = category_index

    def visit(self, item: MetadataItem) -> List[Column]:
        match item:
            case CategoryItem():
                return self._category(item)
            case DataElementItem():
                return self._value_item(item, item.data_element, self._de_raw(item))
            case AttributeItem():
                return self._value_item(item, item.attribute, Fragment("teav.value"))
            case LegendSetItem():
                return self._legend(item)
        raise TypeError(f"Unsupported metadata item: {type(item).__name__}")

    # ---- value typing ------------------------------------------------------

    def column_type(self, value_type: Optional[ValueType]) -> Optional[DataType]:
        if value_type is None:
            return None
        if value_type.is_decimal:
            return DataType.DOUBLE
        if value_type.is_integer:
            return DataType.BIGINT
        if value_type.is_boolean:
            return DataType.INTEGER
        if value_type.is_date:
            return DataType.TIMESTAMP
        if value_type.is_geo:
            return DataType.GEOMETRY if self.spatial else DataType.TEXT
        if value_type.is_organisation_unit:
            return DataType.CHARACTER_11
        if value_type in _TEXT_TYPES:
            return DataType.TEXT
        return None

    def typed_value(self, value_type: ValueType, raw: str) -> str:
        b = self.builder
        if value_type.is_decimal:
            return self.numeric_value(raw)
        if value_type.is_integer:
            return (
                f"case when {b.regexp_like(raw, NUMERIC_LENIENT_REGEXP)} "
                f"then {b.value_cast(b.value_cast(raw, DataType.DOUBLE), DataType.BIGINT)} end"
            )
        if value_type.is_boolean:
            return f"case when {raw} = 'true' then 1 when {raw} = 'false' then 0 end"
        if value_type.is_date:
            return (
                f"case when {b.regexp_like(raw, DATE_REGEXP)} "
                f"then {b.value_cast(raw, DataType.TIMESTAMP)} end"
            )
        if value_type.is_geo and self.spatial:
            if value_type is ValueType.COORDINATE:
                return b.point_from_coordinate(raw)
            return b.geometry_from_geojson(raw)
        return raw

    def numeric_value(self, raw: str) -> str:
        b = self.builder
        return (
            f"case when {b.regexp_like(raw, NUMERIC_LENIENT_REGEXP)} "
            f"then {b.value_cast(raw, DataType.DOUBLE)} end"
        )

    def index_hint(self, value_type: ValueType, has_option_set: bool) -> IndexHint:
        if value_type.is_geo and self.spatial:
            return IndexHint.SPATIAL
        if value_type in _TEXT_TYPES and not has_option_set:
            return IndexHint.SKIP
        return IndexHint.NONE

    # ---- variants ----------------------------------------------------------

    def _category(self, item: CategoryItem) -> List[Column]:
        category = item.category
        return [
            Column(
                name=category.uid,
                data_type=DataType.CHARACTER_11,
                select_expression=CATEGORY_VALUE.render(
                    category=Fragment(self.builder.quote(Uid(category.uid)))
                ),
                index_hint=self.category_index,
                kind=ColumnKind.DYNAMIC,
                created=category.created,
            )
        ]

    def _de_raw(self, item: DataElementItem) -> Fragment:
        return Fragment(self.builder.json_value("psi.eventdatavalues", Uid(item.uid)))

    def _wrap(self, item, expression: str) -> Fragment:
        """Place ``expression`` in the context holding the item's raw value."""
        if isinstance(item, AttributeItem):
            return Fragment(
                ATTRIBUTE_VALUE.render(
                    expression=Fragment(expression),
                    owner=self.owner,
                    attribute_id=item.attribute.id,
                )
            )
        return Fragment(expression)

    def _value_item(self, item, value, raw: Fragment) -> List[Column]:
        data_type = self.column_type(value.value_type)
        if data_type is None:
            log.warning(
                "column.unsupported_value_type",
                uid=value.uid,
                value_type=value.raw_value_type
                or (value.value_type.value if value.value_type else None),
            )
            return []

        columns: List[Column] = []
        if value.value_type.is_organisation_unit:
            columns.extend(self._org_unit_columns(item, value, raw))

        columns.append(
            Column(
                name=value.uid,
                data_type=data_type,
                select_expression=self._wrap(item, self.typed_value(value.value_type, raw)),
                index_hint=self.index_hint(value.value_type, value.has_option_set),
                kind=ColumnKind.DYNAMIC,
                created=value.created,
                requires_spatial=data_type is DataType.GEOMETRY,
            )
        )
        return columns

    def _org_unit_columns(self, item, value, raw: Fragment) -> List[Column]:
        stored_uid = self._wrap(item, raw)
        columns = []
        if self.spatial:
            columns.append(
                Column(
                    name=value.uid + OU_GEOMETRY_COL_SUFFIX,
                    data_type=DataType.GEOMETRY,
                    select_expression=ORG_UNIT_LOOKUP.render(
                        field=Fragment("geometry"), value=stored_uid
                    ),
                    index_hint=IndexHint.SPATIAL,
                    kind=ColumnKind.DYNAMIC,
                    created=value.created,
                    requires_spatial=True,
                )
            )
        columns.append(
            Column(
                name=value.uid + OU_NAME_COL_SUFFIX,
                data_type=DataType.TEXT,
                select_expression=ORG_UNIT_LOOKUP.render(
                    field=Fragment("name"), value=stored_uid
                ),
                index_hint=IndexHint.SKIP,
                kind=ColumnKind.DYNAMIC,
                created=value.created,
            )
        )
        return columns

    def _legend(self, item: LegendSetItem) -> List[Column]:
        source = item.source
        if isinstance(source, DataElementItem):
            value = self._wrap(source, self.numeric_value(self._de_raw(source)))
            created = source.data_element.created
        else:
            value = self._wrap(source, self.numeric_value("teav.value"))
            created = source.attribute.created
        return [
            Column(
                name=item.column_name,
                data_type=DataType.CHARACTER_11,
                select_expression=LEGEND_LOOKUP.render(
                    legend_set_id=item.legend_set.id, value=value
                ),
                kind=ColumnKind.DYNAMIC,
                created=created,
            )
        ]
