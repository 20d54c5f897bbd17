from datetime import datetime, timezone

import pytest

from analytics_tables.core.calendar import get_calendar
from analytics_tables.core.config import AnalyticsTableSettings, Settings
from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.types import Column, DataType, RefreshParams, Table, TableType
from analytics_tables.metadata.model import Program
from analytics_tables.partition.planner import PartitionPlanner, PeriodDataProvider
from analytics_tables.source.ddls import populate_date_period_structure
from analytics_tables.store.watermarks import LAST_FULL_UPDATE

from conftest import T0, MemoryWatermarkStore


class StaticPeriods:
    def __init__(self, years):
        self.years = years
        self.calls = 0

    def available_years(self):
        self.calls += 1
        return list(self.years)


def _table():
    return Table(
        TableType.EVENT,
        Program(id=1, uid="PrgMaterna1"),
        (Column("psi", DataType.CHARACTER_11, "psi.uid"),),
    )


def _planner(periods=None, **settings):
    s = AnalyticsTableSettings(Settings(_env_file=None, **settings))
    return PartitionPlanner(s, periods or StaticPeriods([]))


def test_data_years_within_bounds():
    planner = _planner(EARLIEST_YEAR=2015, LATEST_YEAR=2024)
    params = RefreshParams(start_time=T0)
    table = planner.plan_years(_table(), [2012, 2023, 2018, 2020, 2030], params)

    assert [p.key for p in table.partitions] == [2018, 2020, 2023]
    first = table.partitions[0]
    assert first.start == datetime(2018, 1, 1, tzinfo=timezone.utc)
    assert first.end == datetime(2019, 1, 1, tzinfo=timezone.utc)
    assert table.latest_partition is None


def test_zero_data_years_plans_current_year():
    planner = _planner(EARLIEST_YEAR=2015, LATEST_YEAR=2024)
    table = planner.plan_years(_table(), [], RefreshParams(start_time=T0))
    assert [p.key for p in table.partitions] == [2024]


def test_current_year_follows_calendar():
    planner = _planner(EARLIEST_YEAR=2500, LATEST_YEAR=2600, CALENDAR="thai")
    table = planner.plan_years(_table(), [], RefreshParams(start_time=T0))
    assert [p.key for p in table.partitions] == [2567]
    assert table.partitions[0].start == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_partition_checks_are_attached():
    planner = _planner(EARLIEST_YEAR=2015, LATEST_YEAR=2024)
    table = planner.plan_years(
        _table(), [2020], RefreshParams(start_time=T0), checks=lambda y: (f"yearly = '{y}'",)
    )
    assert table.partitions[0].checks == ("yearly = '2020'",)


def test_year_window_from_offset():
    periods = StaticPeriods([2001, 2030])
    planner = _planner(periods, MAX_PERIOD_YEARS_OFFSET=3)
    assert planner.year_window(RefreshParams(start_time=T0)) == (2021, 2027)
    assert periods.calls == 0


def test_year_window_from_period_table():
    planner = _planner(StaticPeriods([2010, 2011, 2025]))
    assert planner.year_window(RefreshParams(start_time=T0)) == (2010, 2025)


def test_year_window_falls_back_to_current_year():
    planner = _planner(StaticPeriods([]), LATEST_YEAR=2030)
    assert planner.year_window(RefreshParams(start_time=T0)) == (2024, 2030)


def test_inverted_explicit_year_window_fails():
    planner = _planner(EARLIEST_YEAR=2024, LATEST_YEAR=2015)
    with pytest.raises(ConfigurationError, match="empty"):
        planner.year_window(RefreshParams(start_time=T0))


def test_latest_partition_spans_last_full_to_start():
    watermarks = MemoryWatermarkStore()
    last_full = datetime(2024, 5, 1, tzinfo=timezone.utc)
    watermarks.set_setting(LAST_FULL_UPDATE, last_full)

    table = _planner().plan_latest(_table(), watermarks, RefreshParams(start_time=T0, latest_update=True))
    (partition,) = table.partitions
    assert partition.is_latest
    assert (partition.start, partition.end) == (last_full, T0)
    assert table.partition_name(partition) == "analytics_event_prgmaterna1_latest"


def test_latest_without_full_watermark_fails():
    with pytest.raises(ConfigurationError, match="full analytics table update"):
        _planner().plan_latest(
            _table(), MemoryWatermarkStore(), RefreshParams(start_time=T0, latest_update=True)
        )


def test_unknown_calendar():
    with pytest.raises(ConfigurationError, match="not supported"):
        get_calendar("mayan")


def test_ethiopian_year_boundaries():
    cal = get_calendar("ethiopian")
    assert cal.start_of_year(2016) == datetime(2023, 9, 12, tzinfo=timezone.utc)
    assert cal.start_of_year(2017) == datetime(2024, 9, 11, tzinfo=timezone.utc)
    assert cal.year_of(datetime(2024, 6, 1, tzinfo=timezone.utc)) == 2016
    assert cal.year_of(datetime(2024, 9, 11, tzinfo=timezone.utc)) == 2017


def test_period_table_years(store, source):
    assert PeriodDataProvider(store).available_years() == list(range(2015, 2025))


def test_period_table_follows_thai_calendar(store, source):
    populate_date_period_structure(store, 2558, 2567, get_calendar("thai"))

    assert PeriodDataProvider(store).available_years() == list(range(2558, 2568))
    rows = store.query(
        "select year, yearly, monthly from analytics_rs_dateperiodstructure "
        "where dateperiod = date '2018-03-01'"
    )
    assert rows == [(2561, "2561", "201803")]


def test_period_table_follows_ethiopian_new_year(store, source):
    populate_date_period_structure(store, 2015, 2016, get_calendar("ethiopian"))

    rows = store.query(
        "select cast(dateperiod as varchar), year from analytics_rs_dateperiodstructure "
        "where dateperiod in (date '2022-09-10', date '2022-09-11', "
        "date '2023-09-11', date '2023-09-12') order by dateperiod"
    )
    assert rows == [("2022-09-11", 2015), ("2023-09-11", 2015), ("2023-09-12", 2016)]
    (count,) = store.query("select count(*) from analytics_rs_dateperiodstructure")[0]
    assert count == 731
