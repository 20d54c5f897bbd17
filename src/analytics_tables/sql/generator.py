from __future__ import annotations
import hashlib
from typing import Iterable, List, Optional, Sequence

from analytics_tables.core.types import Column, IndexHint, Logged
from analytics_tables.sql.builder import SqlBuilder
from analytics_tables.sql.template import Fragment, Identifier, SqlTemplate

CREATE_TABLE = SqlTemplate("create_table", "${create} ${table} (${columns}${checks})")
INSERT_SELECT = SqlTemplate(
    "insert_select",
    "insert into ${table} (${columns}) select ${expressions} ${from_clause}",
)
DROP_TABLE = SqlTemplate("drop_table", "drop table if exists ${table}")
DROP_VIEW = SqlTemplate("drop_view", "drop view if exists ${view}")
CREATE_VIEW = SqlTemplate("create_view", "create view ${view} as ${select}")
SELECT_ALL = SqlTemplate("select_all", "select * from ${table}")
DELETE_KEYS = SqlTemplate("delete_keys", "delete from ${table} where ${key} in (${keys})")
COUNT_ROWS = SqlTemplate("count_rows", "select count(*) from ${table}")
COUNT_NULLS = SqlTemplate(
    "count_nulls", "select count(*) from ${table} where ${column} is null"
)
COUNT_DUPLICATES = SqlTemplate(
    "count_duplicates",
    "select count(*) from (select ${column} from ${table} "
    "group by ${column} having count(*) > 1)",
)
DISTINCT_VALUES = SqlTemplate("distinct_values", "select distinct ${column} from ${table}")
TABLE_FAMILY = SqlTemplate("table_family", "${catalog} and table_name like ${pattern}")


class SqlGenerator:
    """Renders DDL and DML for analytics tables in one dialect."""

    def __init__(self, builder: SqlBuilder):
        self.builder = builder

    def column_definition(self, column: Column) -> str:
        ddl = f"{self.builder.quote(column.name)} {self.builder.column_type(column.data_type)}"
        return ddl if column.nullable else ddl + " not null"

    def create_table(
        self,
        name: str,
        columns: Sequence[Column],
        logged: Logged = Logged.LOGGED,
        checks: Iterable[str] = (),
    ) -> str:
        checks = "".join(f", check ({c})" for c in checks)
        return CREATE_TABLE.render(
            create=Fragment(self.builder.create_table(logged)),
            table=Identifier(name),
            columns=Fragment(", ".join(self.column_definition(c) for c in columns)),
            checks=Fragment(checks),
        )

    def insert_select(self, name: str, columns: Sequence[Column], from_clause: str) -> str:
        return INSERT_SELECT.render(
            table=Identifier(name),
            columns=Fragment(", ".join(self.builder.quote(c.name) for c in columns)),
            expressions=Fragment(", ".join(c.select_expression for c in columns)),
            from_clause=Fragment(from_clause),
        )

    def drop_table(self, name: str) -> str:
        return DROP_TABLE.render(table=Identifier(name))

    def drop_view(self, name: str) -> str:
        return DROP_VIEW.render(view=Identifier(name))

    def rename_table(self, old: str, new: str) -> str:
        return self.builder.rename_table(old, new)

    def create_view(self, name: str, tables: Sequence[str]) -> str:
        selects = [SELECT_ALL.render(table=Identifier(t)) for t in tables]
        return CREATE_VIEW.render(
            view=Identifier(name), select=Fragment(self.builder.union_all(selects))
        )

    def delete_keys(self, table: str, key: str, keys_query: str) -> str:
        return DELETE_KEYS.render(
            table=Identifier(table), key=Identifier(key), keys=Fragment(keys_query)
        )

    def count_rows(self, table: str) -> str:
        return COUNT_ROWS.render(table=Identifier(table))

    def count_nulls(self, table: str, column: str) -> str:
        return COUNT_NULLS.render(table=Identifier(table), column=Identifier(column))

    def count_duplicates(self, table: str, column: str) -> str:
        """Number of values of ``column`` held by more than one row."""
        return COUNT_DUPLICATES.render(table=Identifier(table), column=Identifier(column))

    def distinct_values(self, table: str, column: str) -> str:
        return DISTINCT_VALUES.render(table=Identifier(table), column=Identifier(column))

    @staticmethod
    def index_name(table: str, column: str) -> str:
        digest = hashlib.md5(f"{table}.{column}".encode("utf-8")).hexdigest()[:8]
        return f"in_{column[:40]}_{digest}".lower()

    def create_index(self, table: str, column: Column) -> Optional[str]:
        return self.builder.create_index(
            self.index_name(table, column.name), table, column.name, column.index_hint
        )

    def create_indexes(self, table: str, columns: Iterable[Column]) -> List[str]:
        out = []
        for column in columns:
            if column.index_hint is IndexHint.SKIP:
                continue
            sql = self.create_index(table, column)
            if sql:
                out.append(sql)
        return out

    def table_family(self, prefix: str) -> str:
        """List base tables whose name starts with ``prefix``."""
        return TABLE_FAMILY.render(
            catalog=Fragment(self.builder.table_catalog()),
            pattern=Fragment(f"'{Identifier(prefix)}%'"),
        )
