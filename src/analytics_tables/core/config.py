from __future__ import annotations
from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict

from analytics_tables.core.calendar import Calendar, get_calendar
from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.types import IndexHint, Logged


class Database(Enum):
    DUCKDB = "DUCKDB"
    POSTGRESQL = "POSTGRESQL"


class Settings(BaseSettings):
    DB_PATH: str = "warehouse/analytics.duckdb"
    METADATA_PATH: str = "conf/metadata.yaml"
    DATABASE: str = "DUCKDB"
    CALENDAR: str = "iso8601"
    TABLE_UNLOGGED: bool = False
    SPATIAL_SUPPORT: bool | None = None
    EARLIEST_YEAR: int | None = None
    LATEST_YEAR: int | None = None
    MAX_PERIOD_YEARS_OFFSET: int | None = None
    PARALLEL_JOBS: int = 4
    CREATE_INDEXES: bool = True
    INDEX_CATEGORY_COLUMNS: bool = True
    INDEX_ORG_UNIT_GROUP_SET_COLUMNS: bool = True
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="ANALYTICS_"
    )


class AnalyticsTableSettings:
    """
    Process-wide analytics table configuration. Built once at start-up and
    handed to every component that needs it; values are validated eagerly so
    a bad property fails the run before any table is touched.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.database = self._validate_database(self.settings.DATABASE)
        self.calendar: Calendar = get_calendar(self.settings.CALENDAR)
        if self.settings.PARALLEL_JOBS < 1:
            raise ConfigurationError("Property 'PARALLEL_JOBS' must be at least 1")
        self._spatial_support = self.settings.SPATIAL_SUPPORT

    @staticmethod
    def _validate_database(value: str) -> Database:
        key = (value or "").strip().upper()
        try:
            return Database(key)
        except ValueError:
            raise ConfigurationError(
                f"Property 'DATABASE' has illegal value: '{value}', allowed options: "
                f"{','.join(d.value for d in Database)}"
            ) from None

    @property
    def table_logged(self) -> Logged:
        return Logged.UNLOGGED if self.settings.TABLE_UNLOGGED else Logged.LOGGED

    @property
    def parallel_jobs(self) -> int:
        return self.settings.PARALLEL_JOBS

    @property
    def create_indexes(self) -> bool:
        return self.settings.CREATE_INDEXES

    @property
    def spatial_support(self) -> bool:
        return bool(self._spatial_support)

    def resolve_spatial_support(self, detected: bool) -> bool:
        """Settle the spatial flag against what the store actually offers."""
        if self._spatial_support is None:
            self._spatial_support = detected
        elif self._spatial_support and not detected:
            raise ConfigurationError(
                "Spatial support is enabled but the database has no spatial extension"
            )
        return self._spatial_support

    @property
    def supported_year_bounds(self) -> tuple[int | None, int | None]:
        return self.settings.EARLIEST_YEAR, self.settings.LATEST_YEAR

    @property
    def max_period_years_offset(self) -> int | None:
        offset = self.settings.MAX_PERIOD_YEARS_OFFSET
        return None if offset is None or offset < 0 else offset

    def skip_index_category_columns(self) -> IndexHint:
        return _to_hint(self.settings.INDEX_CATEGORY_COLUMNS)

    def skip_index_org_unit_group_set_columns(self) -> IndexHint:
        return _to_hint(self.settings.INDEX_ORG_UNIT_GROUP_SET_COLUMNS)


def _to_hint(enabled: bool) -> IndexHint:
    return IndexHint.NONE if enabled else IndexHint.SKIP
