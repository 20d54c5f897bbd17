"""
Latest partition updates.

Only rows changed since the last full refresh are rebuilt, into a single
``latest`` partition. During the swap the keys of those rows are deleted from
the published year partitions so the view never shows a row twice.
"""
from __future__ import annotations
from typing import List, Optional

import structlog

from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.time import latest
from analytics_tables.core.types import LATEST_PARTITION, RefreshParams, Table
from analytics_tables.refresh.mode import RefreshMode
from analytics_tables.store.watermarks import LAST_FULL_UPDATE, LAST_LATEST_UPDATE
from analytics_tables.tables.base import TableManager

log = structlog.get_logger(mod="refresh.incremental")


class LatestPartitionUpdater(RefreshMode):
    name = "latest"

    def prepare(self, params: RefreshParams) -> None:
        if self.watermarks.get_setting(LAST_FULL_UPDATE) is None:
            raise ConfigurationError(
                "A full analytics table update process must be run prior to a "
                "latest partition update process"
            )

    def refresh_latest(
        self, manager: TableManager, subject, params: RefreshParams, last_resource_update=None
    ) -> Optional[Table]:
        last_full = self.watermarks.get_setting(LAST_FULL_UPDATE)
        last_latest = self.watermarks.get_setting(LAST_LATEST_UPDATE)
        since = latest(last_full, last_latest)
        if since is None:
            raise ConfigurationError(
                "A full analytics table update process must be run prior to a "
                "latest partition update process"
            )

        if not manager.has_updated_data(subject, since, params.start_time):
            log.info(
                "latest.no_updated_data",
                subject=subject.uid,
                start=str(since),
                end=str(params.start_time),
            )
            return None

        table = manager.plan_latest(subject, params, last_resource_update)
        log.info(
            "latest.partition_added",
            table=table.name,
            start=str(last_full),
            end=str(params.start_time),
        )
        return table

    plan = refresh_latest

    def swap_statements(self, manager: TableManager, table: Table) -> List[str]:
        gen = manager.generator
        partition = table.latest_partition
        published = manager.published_partitions(table)
        years = [n for n in published if not n.endswith(f"_{LATEST_PARTITION}")]
        keys = manager.updated_query(table.subject, partition.start, partition.end)

        statements = [gen.drop_view(table.name)]
        statements += [gen.delete_keys(name, manager.key_column, keys) for name in years]
        statements.append(gen.drop_table(table.partition_name(partition)))
        statements.append(
            gen.rename_table(table.staging_partition_name(partition), table.partition_name(partition))
        )
        statements.append(gen.create_view(table.name, years + [table.partition_name(partition)]))
        return statements

    def advance_watermarks(self, params: RefreshParams) -> None:
        self.watermarks.set_setting(LAST_LATEST_UPDATE, params.start_time)
        log.info("watermark.latest_advanced", value=str(params.start_time))
