from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from analytics_tables.core.config import Database
from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.types import DataType, IndexHint, Logged
from analytics_tables.sql.template import Identifier, Uid


def quote_ident(name: str) -> str:
    return '"' + Identifier(name) + '"'


class SqlBuilder(ABC):
    """Dialect specific pieces of SQL. Everything else is shared."""

    database: Database

    _TYPES: dict = {}

    def quote(self, name: str) -> str:
        return quote_ident(name)

    def column_type(self, data_type: DataType) -> str:
        return self._TYPES[data_type]

    def cast(self, expression: str, data_type: DataType) -> str:
        return f"cast({expression} as {self.column_type(data_type)})"

    def value_cast(self, expression: str, data_type: DataType) -> str:
        """Cast of a value that already passed a regex check."""
        return self.cast(expression, data_type)

    def create_table(self, logged: Logged) -> str:
        return "create table"

    def first_if_not_null(self, first: str, second: str) -> str:
        return f"case when {first} is not null then {first} else {second} end"

    def concat_ws(self, separator: str, expressions: Iterable[str]) -> str:
        parts = ", ".join(expressions)
        return f"concat_ws('{separator}', {parts})"

    def display_name(self, column: str) -> str:
        surname = self.json_extract(column, "surname")
        first_name = self.json_extract(column, "firstName")
        return f"nullif({self.concat_ws(', ', [surname, first_name])}, '')"

    def rename_table(self, old: str, new: str) -> str:
        return f"alter table {self.quote(old)} rename to {self.quote(new)}"

    def union_all(self, selects: Iterable[str]) -> str:
        return " union all ".join(selects)

    def point_x(self, geometry: str) -> str:
        return f"case when 'POINT' = GeometryType({geometry}) then ST_X({geometry}) end"

    def point_y(self, geometry: str) -> str:
        return f"case when 'POINT' = GeometryType({geometry}) then ST_Y({geometry}) end"

    def geometry_from_geojson(self, expression: str) -> str:
        return f"ST_GeomFromGeoJSON({expression})"

    def point_from_coordinate(self, expression: str) -> str:
        return self.geometry_from_geojson(
            "'{\"type\":\"Point\", \"coordinates\":' || " + expression + " || '}'"
        )

    def table_catalog(self) -> str:
        return (
            "select table_name from information_schema.tables "
            "where table_type = 'BASE TABLE' and table_name like 'analytics%'"
        )

    @abstractmethod
    def json_extract(self, column: str, key: str) -> str: ...

    @abstractmethod
    def json_value(self, column: str, uid: Uid) -> str:
        """Raw ``value`` stored under ``uid`` in a ``{uid: {value: ..}}`` document."""

    @abstractmethod
    def regexp_like(self, expression: str, pattern: str) -> str:
        """Case-insensitive regex match. ``pattern`` is an internal constant."""

    @abstractmethod
    def create_index(
        self, name: str, table: str, column: str, hint: IndexHint
    ) -> Optional[str]: ...

    @abstractmethod
    def spatial_extension(self) -> str:
        """Query returning a row when a spatial extension is available."""


class DuckDbSqlBuilder(SqlBuilder):
    database = Database.DUCKDB

    _TYPES = {
        DataType.CHARACTER_11: "varchar(11)",
        DataType.CHARACTER_32: "varchar(32)",
        DataType.VARCHAR_50: "varchar(50)",
        DataType.VARCHAR_255: "varchar(255)",
        DataType.TEXT: "varchar",
        DataType.INTEGER: "integer",
        DataType.BIGINT: "bigint",
        DataType.DOUBLE: "double",
        DataType.BOOLEAN: "boolean",
        DataType.TIMESTAMP: "timestamp",
        DataType.GEOMETRY: "geometry",
    }

    def value_cast(self, expression, data_type):
        return f"try_cast({expression} as {self.column_type(data_type)})"

    def json_extract(self, column: str, key: str) -> str:
        return f"json_extract_string({column}, '$.{key}')"

    def json_value(self, column: str, uid: Uid) -> str:
        return f"json_extract_string({column}, '$.{Uid(uid)}.value')"

    def regexp_like(self, expression: str, pattern: str) -> str:
        return f"regexp_matches({expression}, '{pattern}', 'i')"

    def union_all(self, selects: Iterable[str]) -> str:
        # partitions built before a metadata change may lack newer columns
        return " union all by name ".join(selects)

    def create_index(self, name, table, column, hint):
        if hint is IndexHint.SKIP:
            return None
        using = " using rtree" if hint is IndexHint.SPATIAL else ""
        return (
            f"create index {self.quote(name)} on {self.quote(table)}"
            f"{using} ({self.quote(column)})"
        )

    def spatial_extension(self) -> str:
        return (
            "select extension_name from duckdb_extensions() "
            "where extension_name = 'spatial' and loaded"
        )


class PostgreSqlBuilder(SqlBuilder):
    database = Database.POSTGRESQL

    _TYPES = {
        DataType.CHARACTER_11: "character(11)",
        DataType.CHARACTER_32: "character(32)",
        DataType.VARCHAR_50: "varchar(50)",
        DataType.VARCHAR_255: "varchar(255)",
        DataType.TEXT: "text",
        DataType.INTEGER: "integer",
        DataType.BIGINT: "bigint",
        DataType.DOUBLE: "double precision",
        DataType.BOOLEAN: "boolean",
        DataType.TIMESTAMP: "timestamp",
        DataType.GEOMETRY: "geometry",
    }

    def create_table(self, logged: Logged) -> str:
        return "create unlogged table" if logged is Logged.UNLOGGED else "create table"

    def json_extract(self, column: str, key: str) -> str:
        return f"{column} ->> '{key}'"

    def json_value(self, column: str, uid: Uid) -> str:
        return f"{column} #>> '{{{Uid(uid)}, value}}'"

    def regexp_like(self, expression: str, pattern: str) -> str:
        return f"{expression} ~* '{pattern}'"

    def create_index(self, name, table, column, hint):
        if hint is IndexHint.SKIP:
            return None
        method = "gist" if hint is IndexHint.SPATIAL else "btree"
        return (
            f"create index {self.quote(name)} on {self.quote(table)} "
            f"using {method} ({self.quote(column)})"
        )

    def spatial_extension(self) -> str:
        return "select extname from pg_extension where extname = 'postgis'"


_BUILDERS = {
    Database.DUCKDB: DuckDbSqlBuilder,
    Database.POSTGRESQL: PostgreSqlBuilder,
}


def get_sql_builder(database: Database) -> SqlBuilder:
    try:
        return _BUILDERS[database]()
    except KeyError:
        raise ConfigurationError(f"Unsupported analytics database: {database}") from None
