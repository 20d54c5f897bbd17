from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

import structlog

from analytics_tables.core.config import AnalyticsTableSettings
from analytics_tables.core.types import (
    Column,
    Partition,
    RefreshParams,
    Table,
    TableType,
)
from analytics_tables.metadata.catalog import MetadataCatalog
from analytics_tables.partition.planner import PartitionPlanner
from analytics_tables.schema.deriver import SchemaDeriver
from analytics_tables.sql.builder import SqlBuilder
from analytics_tables.sql.generator import SqlGenerator
from analytics_tables.sql.template import Fragment, SqlTemplate
from analytics_tables.store.duckdb_store import RelationalStore
from analytics_tables.store.watermarks import WatermarkStore

log = structlog.get_logger(mod="tables.base")

EXPORTABLE_EVENT_STATUSES = ("COMPLETED", "ACTIVE", "SCHEDULE")
STATUS_LIST = Fragment(",".join(f"'{s}'" for s in EXPORTABLE_EVENT_STATUSES))

RANGE_CLAUSE = SqlTemplate(
    "range_clause",
    "and (${column}) >= ${start} and (${column}) < ${end}",
)
LATEST_CLAUSE = SqlTemplate("latest_clause", "and ${column} >= ${start}")
FROM_DATE_CLAUSE = SqlTemplate("from_date_clause", "and (${column}) >= ${from_date}")


@dataclass
class ManagerDeps:
    store: RelationalStore
    builder: SqlBuilder
    generator: SqlGenerator
    deriver: SchemaDeriver
    planner: PartitionPlanner
    settings: AnalyticsTableSettings
    watermarks: WatermarkStore
    catalog: MetadataCatalog


@dataclass(frozen=True)
class PartitionStatements:
    partition: Partition
    staging_table: str
    create: str
    insert: str


class TableManager(ABC):
    """
    Type specific knowledge about one family of analytics tables: which
    subjects own a table, what the columns are, and the SQL that selects,
    counts and changes their source rows.
    """

    table_type: TableType
    # unique per row, shared by inserts and incremental deletes
    key_column: str

    def __init__(self, deps: ManagerDeps):
        self.deps = deps
        self.store = deps.store
        self.generator = deps.generator
        self.log = log.bind(table_type=self.table_type.name.lower())

    # ---- subject specific SQL ----------------------------------------------

    @abstractmethod
    def subjects(self) -> List: ...

    @abstractmethod
    def columns(self, subject, last_resource_update: Optional[datetime]) -> Tuple[Column, ...]: ...

    @abstractmethod
    def from_clause(
        self, subject, partition: Partition, params: RefreshParams, window: Tuple[int, int]
    ) -> str: ...

    @abstractmethod
    def data_years_query(
        self, subject, params: RefreshParams, window: Tuple[int, int]
    ) -> str: ...

    @abstractmethod
    def updated_query(self, subject, start: datetime, end: datetime) -> str:
        """Selects the ``key_column`` values of rows changed in ``[start, end)``."""

    def partition_checks(self, year: int) -> Tuple[str, ...]:
        return ()

    # ---- shared -------------------------------------------------------------

    def data_years(self, subject, params: RefreshParams, window: Tuple[int, int]) -> List[int]:
        rows = self.store.query(self.data_years_query(subject, params, window))
        return sorted(int(r[0]) for r in rows if r[0] is not None)

    def has_updated_data(self, subject, start: datetime, end: datetime) -> bool:
        rows = self.store.query(f"{self.updated_query(subject, start, end)} limit 1")
        return bool(rows)

    def table(self, subject, last_resource_update: Optional[datetime] = None) -> Table:
        return Table(
            table_type=self.table_type,
            subject=subject,
            columns=self.columns(subject, last_resource_update),
            logged=self.deps.settings.table_logged,
        )

    def plan_full(self, subject, params: RefreshParams, last_resource_update=None) -> Table:
        planner = self.deps.planner
        window = planner.year_window(params)
        years = self.data_years(subject, params, window)
        return planner.plan_years(
            self.table(subject, last_resource_update),
            years,
            params,
            window=window,
            checks=self.partition_checks,
        )

    def plan_latest(self, subject, params: RefreshParams, last_resource_update=None) -> Table:
        return self.deps.planner.plan_latest(
            self.table(subject, last_resource_update), self.deps.watermarks, params
        )

    def statements(
        self, table: Table, params: RefreshParams, window: Tuple[int, int]
    ) -> List[PartitionStatements]:
        out = []
        for partition in table.partitions:
            staging = table.staging_partition_name(partition)
            out.append(
                PartitionStatements(
                    partition=partition,
                    staging_table=staging,
                    create=self.generator.create_table(
                        staging, table.columns, table.logged, partition.checks
                    ),
                    insert=self.generator.insert_select(
                        staging,
                        table.columns,
                        self.from_clause(table.subject, partition, params, window),
                    ),
                )
            )
        return out

    def partition_clause(self, partition: Partition, date_column: str, updated_column: str) -> Fragment:
        if partition.is_latest:
            return Fragment(
                LATEST_CLAUSE.render(column=Fragment(updated_column), start=partition.start)
            )
        return Fragment(
            RANGE_CLAUSE.render(
                column=Fragment(date_column), start=partition.start, end=partition.end
            )
        )

    def from_date_clause(self, params: RefreshParams, date_column: str) -> Fragment:
        if params.from_date is None:
            return Fragment("")
        return Fragment(
            FROM_DATE_CLAUSE.render(column=Fragment(date_column), from_date=params.from_date)
        )

    def published_partitions(self, table: Table) -> List[str]:
        """Names of the partition tables currently published for ``table``."""
        rows = self.store.query(self.generator.table_family(f"{table.name}_"))
        prefix = f"{table.name}_"
        names = []
        for (name,) in rows:
            suffix = name[len(prefix):]
            # '_' is a LIKE wildcard, and longer subject names can share the prefix
            if name.startswith(prefix) and (suffix.isdigit() or suffix == "latest"):
                names.append(name)
        return sorted(names)
