from __future__ import annotations
from datetime import datetime
from typing import Optional, Protocol

import structlog

from analytics_tables.core.time import as_utc, naive_utc

LAST_FULL_UPDATE = "keyLastSuccessfulAnalyticsTablesUpdate"
LAST_LATEST_UPDATE = "keyLastSuccessfulLatestAnalyticsPartitionUpdate"
LAST_RESOURCE_TABLES_UPDATE = "keyLastSuccessfulResourceTablesUpdate"

SETTINGS_TABLE = "analytics_system_setting"

log = structlog.get_logger(mod="store.watermarks")


class WatermarkStore(Protocol):
    def get_setting(self, key: str) -> Optional[datetime]: ...

    def set_setting(self, key: str, value: datetime) -> None: ...

    def delete_setting(self, key: str) -> None: ...


class DuckDBWatermarkStore:
    """Timestamps kept in a key/value table next to the analytics tables."""

    def __init__(self, store):
        self.store = store
        self.store.execute(
            f"create table if not exists {SETTINGS_TABLE} "
            "(name varchar not null, value timestamp not null)"
        )

    def get_setting(self, key: str) -> Optional[datetime]:
        rows = self.store.query(f"select value from {SETTINGS_TABLE} where name = ?", [key])
        return as_utc(rows[0][0]) if rows else None

    def set_setting(self, key: str, value: datetime) -> None:
        with self.store.transaction():
            self.store.execute(f"delete from {SETTINGS_TABLE} where name = ?", [key])
            self.store.execute(
                f"insert into {SETTINGS_TABLE} (name, value) values (?, ?)",
                [key, naive_utc(value)],
            )
        log.info("watermark.set", key=key, value=naive_utc(value).isoformat())

    def delete_setting(self, key: str) -> None:
        self.store.execute(f"delete from {SETTINGS_TABLE} where name = ?", [key])
        log.info("watermark.deleted", key=key)
