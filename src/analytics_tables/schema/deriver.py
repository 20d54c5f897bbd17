"""
Schema derivation: live metadata in, ordered typed column list out.

Column order is fixed columns, categories, org unit levels / name hierarchy /
group sets, periods, data elements, attributes, data element legends,
attribute legends, registration columns. Names are de-duplicated with fixed
columns taking priority and otherwise the first occurrence winning.
"""
from __future__ import annotations
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from analytics_tables.core.time import as_utc
from analytics_tables.core.types import Column, ColumnKind, DataType, IndexHint
from analytics_tables.metadata.model import (
    OrganisationUnitGroupSet,
    OrganisationUnitLevel,
    Program,
    TrackedEntityType,
)
from analytics_tables.schema.fixed import (
    enrollment_fixed_columns,
    event_fixed_columns,
    event_period_columns,
    event_registration_columns,
)
from analytics_tables.schema.items import (
    AttributeItem,
    CategoryItem,
    DataElementItem,
    legend_items,
)
from analytics_tables.schema.visitor import ColumnVisitor
from analytics_tables.sql.builder import SqlBuilder

log = structlog.get_logger(mod="schema.deriver")


def deduplicate(columns: Iterable[Column]) -> Tuple[Column, ...]:
    """Fixed columns win any name clash, then the first column seen wins."""
    columns = list(columns)
    fixed = {c.name for c in columns if not c.is_dynamic}
    seen = set()
    out = []
    for c in columns:
        if c.name in seen or (c.is_dynamic and c.name in fixed):
            log.debug("column.duplicate_dropped", column=c.name, kind=c.kind.value)
            continue
        seen.add(c.name)
        out.append(c)
    return tuple(out)


def filter_created(
    columns: Iterable[Column], last_resource_update: Optional[datetime]
) -> List[Column]:
    """Drop dynamic columns whose metadata is newer than the resource tables."""
    if last_resource_update is None:
        return list(columns)
    cutoff = as_utc(last_resource_update)
    out = []
    for c in columns:
        if c.is_dynamic and c.created is not None and as_utc(c.created) > cutoff:
            log.info("column.skipped_newer_than_resources", column=c.name)
            continue
        out.append(c)
    return out


class SchemaDeriver:
    def __init__(
        self,
        builder: SqlBuilder,
        spatial: bool,
        org_unit_levels: Sequence[OrganisationUnitLevel] = (),
        org_unit_group_sets: Sequence[OrganisationUnitGroupSet] = (),
        category_index: IndexHint = IndexHint.NONE,
        group_set_index: IndexHint = IndexHint.NONE,
    ):
        self.builder = builder
        self.spatial = spatial
        self.org_unit_levels = sorted(org_unit_levels, key=lambda lv: lv.level)
        self.org_unit_group_sets = tuple(org_unit_group_sets)
        self.category_index = category_index
        self.group_set_index = group_set_index

    def _visitor(self, owner: str) -> ColumnVisitor:
        return ColumnVisitor(
            self.builder, self.spatial, owner=owner, category_index=self.category_index
        )

    # ---- shared column groups ----------------------------------------------

    def org_unit_level_columns(self) -> List[Column]:
        b = self.builder
        cols = [
            Column(
                name=f"uidlevel{lv.level}",
                data_type=DataType.CHARACTER_11,
                select_expression=f"ous.{b.quote(f'uidlevel{lv.level}')}",
            )
            for lv in self.org_unit_levels
        ]
        if self.org_unit_levels:
            names = [f"ous.{b.quote(f'namelevel{lv.level}')}" for lv in self.org_unit_levels]
            cols.append(
                Column(
                    name="ounamehierarchy",
                    data_type=DataType.TEXT,
                    select_expression=b.concat_ws(" / ", names),
                    index_hint=IndexHint.SKIP,
                )
            )
        return cols

    def org_unit_group_set_columns(self) -> List[Column]:
        return [
            Column(
                name=gs.uid,
                data_type=DataType.CHARACTER_11,
                select_expression=f"ougs.{self.builder.quote(gs.uid)}",
                index_hint=self.group_set_index,
                kind=ColumnKind.DYNAMIC,
                created=gs.created,
            )
            for gs in self.org_unit_group_sets
        ]

    def finish(
        self, columns: Iterable[Column], last_resource_update: Optional[datetime]
    ) -> Tuple[Column, ...]:
        cols = filter_created(columns, last_resource_update)
        if not self.spatial:
            cols = [c for c in cols if not c.requires_spatial]
        return deduplicate(cols)

    # ---- per table type ----------------------------------------------------

    def event_columns(
        self, program: Program, last_resource_update: Optional[datetime] = None
    ) -> Tuple[Column, ...]:
        visitor = self._visitor("pi")
        columns: List[Column] = list(event_fixed_columns(self.builder))

        if program.has_non_default_category_combo():
            for category in program.category_combo.categories:
                if category.data_dimension:
                    columns.extend(visitor.visit(CategoryItem(category)))

        columns.extend(self.org_unit_level_columns())
        columns.extend(self.org_unit_group_set_columns())
        columns.extend(event_period_columns())

        de_items = [DataElementItem(de) for de in program.analytics_data_elements()]
        attr_items = [AttributeItem(a) for a in program.analytics_attributes()]
        for item in de_items + attr_items:
            columns.extend(visitor.visit(item))
        for item in de_items + attr_items:
            for legend in legend_items(item):
                columns.extend(visitor.visit(legend))

        if program.registration:
            columns.extend(event_registration_columns())

        out = self.finish(columns, last_resource_update)
        log.debug("schema.derived", table_type="event", subject=program.uid, columns=len(out))
        return out

    def enrollment_columns(
        self, tet: TrackedEntityType, last_resource_update: Optional[datetime] = None
    ) -> Tuple[Column, ...]:
        visitor = self._visitor("tei")
        columns: List[Column] = list(enrollment_fixed_columns(self.builder))
        columns.extend(self.org_unit_level_columns())

        attr_items = [AttributeItem(a) for a in tet.analytics_attributes()]
        for item in attr_items:
            columns.extend(visitor.visit(item))
        for item in attr_items:
            for legend in legend_items(item):
                columns.extend(visitor.visit(legend))

        out = self.finish(columns, last_resource_update)
        log.debug("schema.derived", table_type="enrollment", subject=tet.uid, columns=len(out))
        return out
