from __future__ import annotations
from typing import List

import structlog

from analytics_tables.core.types import RefreshParams, Table
from analytics_tables.refresh.mode import RefreshMode
from analytics_tables.store.watermarks import LAST_FULL_UPDATE, LAST_LATEST_UPDATE
from analytics_tables.tables.base import TableManager

log = structlog.get_logger(mod="refresh.full")


class FullRefresh(RefreshMode):
    """Rebuild every year partition of a table and replace all published ones."""

    name = "full"

    def plan(self, manager: TableManager, subject, params: RefreshParams, last_resource_update=None) -> Table:
        return manager.plan_full(subject, params, last_resource_update)

    def swap_statements(self, manager: TableManager, table: Table) -> List[str]:
        gen = manager.generator
        new = [table.partition_name(p) for p in table.partitions]
        statements = [gen.drop_view(table.name)]
        statements += [gen.drop_table(name) for name in manager.published_partitions(table)]
        statements += [
            gen.rename_table(table.staging_partition_name(p), table.partition_name(p))
            for p in table.partitions
        ]
        statements.append(gen.create_view(table.name, new))
        return statements

    def advance_watermarks(self, params: RefreshParams) -> None:
        self.watermarks.set_setting(LAST_FULL_UPDATE, params.start_time)
        # the latest partitions were dropped with the rest of the old tables
        self.watermarks.delete_setting(LAST_LATEST_UPDATE)
        log.info("watermark.full_advanced", value=str(params.start_time))
