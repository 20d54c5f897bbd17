"""
Partition planning.

A full refresh gets one partition per calendar year with data (or the
current year when there is none); a latest refresh gets exactly one rolling
partition covering ``[last full refresh, run start)``.
"""
from __future__ import annotations
from typing import Callable, Iterable, List, Optional, Tuple

import structlog

from analytics_tables.core.config import AnalyticsTableSettings
from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.types import LATEST_PARTITION, Partition, RefreshParams, Table
from analytics_tables.store.watermarks import LAST_FULL_UPDATE

log = structlog.get_logger(mod="partition.planner")

DATE_PERIOD_TABLE = "analytics_rs_dateperiodstructure"


class PeriodDataProvider:
    """Years known to the date period resource table."""

    def __init__(self, store):
        self.store = store

    def available_years(self) -> List[int]:
        rows = self.store.query(
            f"select distinct year from {DATE_PERIOD_TABLE} "
            "where year is not null order by year"
        )
        return [int(r[0]) for r in rows]


class PartitionPlanner:
    def __init__(self, settings: AnalyticsTableSettings, period_data: PeriodDataProvider):
        self.settings = settings
        self.calendar = settings.calendar
        self.period_data = period_data

    def current_year(self, params: RefreshParams) -> int:
        return self.calendar.year_of(params.start_time)

    def year_window(self, params: RefreshParams) -> Tuple[int, int]:
        """Inclusive ``(earliest, latest)`` range of years eligible for partitions."""
        earliest, latest = self.settings.supported_year_bounds
        if earliest is not None and latest is not None:
            window = (earliest, latest)
        else:
            current = self.current_year(params)
            offset = self.settings.max_period_years_offset
            if offset is not None:
                default = (current - offset, current + offset)
            else:
                years = self.period_data.available_years()
                default = (years[0], years[-1]) if years else (current, current)
            window = (
                earliest if earliest is not None else default[0],
                latest if latest is not None else default[1],
            )
        if window[0] > window[1]:
            raise ConfigurationError(
                f"Supported year window is empty: {window[0]} > {window[1]}"
            )
        return window

    def plan_years(
        self,
        table: Table,
        data_years: Iterable[int],
        params: RefreshParams,
        window: Optional[Tuple[int, int]] = None,
        checks: Callable[[int], Tuple[str, ...]] = lambda year: (),
    ) -> Table:
        lo, hi = window or self.year_window(params)
        years = sorted({int(y) for y in data_years if lo <= int(y) <= hi})
        if not years:
            years = [self.current_year(params)]
            log.info("partition.no_data_years", table=table.name, year=years[0])

        partitions = [
            Partition(
                key=year,
                start=self.calendar.start_of_year(year),
                end=self.calendar.end_of_year(year),
                checks=tuple(checks(year)),
            )
            for year in years
        ]
        log.info("partition.planned", table=table.name, years=years)
        return table.with_partitions(partitions)

    def plan_latest(self, table: Table, watermarks, params: RefreshParams) -> Table:
        last_full = watermarks.get_setting(LAST_FULL_UPDATE)
        if last_full is None:
            raise ConfigurationError(
                "A full analytics table update process must be run prior to a "
                "latest partition update process"
            )
        partition = Partition(key=LATEST_PARTITION, start=last_full, end=params.start_time)
        log.info(
            "partition.planned_latest",
            table=table.name,
            start=str(last_full),
            end=str(params.start_time),
        )
        return table.with_partitions([partition])
