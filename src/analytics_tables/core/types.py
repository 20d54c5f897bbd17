from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple, Union

from analytics_tables.core.errors import ConfigurationError


class DataType(Enum):
    CHARACTER_11 = "character_11"
    CHARACTER_32 = "character_32"
    VARCHAR_50 = "varchar_50"
    VARCHAR_255 = "varchar_255"
    TEXT = "text"
    INTEGER = "integer"
    BIGINT = "bigint"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    GEOMETRY = "geometry"


class IndexHint(Enum):
    NONE = "none"
    SPATIAL = "spatial"
    SKIP = "skip"


class ColumnKind(Enum):
    FIXED = "fixed"
    DYNAMIC = "dynamic"


class Logged(Enum):
    LOGGED = "logged"
    UNLOGGED = "unlogged"


class TableType(Enum):
    EVENT = "analytics_event"
    ENROLLMENT = "analytics_tei_enrollments"

    @property
    def prefix(self) -> str:
        return self.value

    @property
    def staging_prefix(self) -> str:
        return self.value.replace("analytics_", "analytics_temp_", 1)


LATEST_PARTITION = "latest"


@dataclass(frozen=True)
class Column:
    name: str
    data_type: DataType
    select_expression: str
    nullable: bool = True
    index_hint: IndexHint = IndexHint.NONE
    kind: ColumnKind = ColumnKind.FIXED
    created: Optional[datetime] = None
    requires_spatial: bool = False

    @property
    def is_dynamic(self) -> bool:
        return self.kind is ColumnKind.DYNAMIC


@dataclass(frozen=True)
class Partition:
    key: Union[int, str]
    start: Optional[datetime]
    end: Optional[datetime]
    checks: Tuple[str, ...] = ()

    @property
    def is_latest(self) -> bool:
        return self.key == LATEST_PARTITION

    @property
    def suffix(self) -> str:
        return str(self.key)


@dataclass(frozen=True)
class Table:
    """A logical analytics table owned by one metadata subject."""

    table_type: TableType
    subject: object
    columns: Tuple[Column, ...]
    logged: Logged = Logged.LOGGED
    partitions: Tuple[Partition, ...] = ()

    def __post_init__(self):
        names = [c.name for c in self.columns]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ConfigurationError(
                f"Duplicate columns in table '{self.name}': {', '.join(dupes)}"
            )
        latest = [p for p in self.partitions if p.is_latest]
        if len(latest) > 1:
            raise ConfigurationError(f"Table '{self.name}' has more than one latest partition")
        years = [p.key for p in self.partitions if not p.is_latest]
        if years != sorted(set(years)):
            raise ConfigurationError(
                f"Year partitions of '{self.name}' must be unique and ascending: {years}"
            )

    @property
    def name(self) -> str:
        return f"{self.table_type.prefix}_{self.subject.uid.lower()}"

    @property
    def staging_name(self) -> str:
        return f"{self.table_type.staging_prefix}_{self.subject.uid.lower()}"

    def partition_name(self, partition: Partition) -> str:
        return f"{self.name}_{partition.suffix}"

    def staging_partition_name(self, partition: Partition) -> str:
        return f"{self.staging_name}_{partition.suffix}"

    @property
    def latest_partition(self) -> Optional[Partition]:
        return next((p for p in self.partitions if p.is_latest), None)

    def with_partitions(self, partitions) -> "Table":
        return replace(self, partitions=tuple(partitions))

    def column(self, name: str) -> Optional[Column]:
        return next((c for c in self.columns if c.name == name), None)


@dataclass(frozen=True)
class RefreshParams:
    start_time: datetime
    latest_update: bool = False
    skip_subjects: frozenset = field(default_factory=frozenset)
    skip_table_types: frozenset = field(default_factory=frozenset)
    from_date: Optional[date] = None

    @property
    def mode(self) -> str:
        return "latest" if self.latest_update else "full"
