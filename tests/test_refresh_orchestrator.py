from datetime import datetime, timedelta

import pytest

from analytics_tables.core.calendar import get_calendar
from analytics_tables.core.config import AnalyticsTableSettings, Settings
from analytics_tables.core.dataclasses import RefreshState, RunStatus
from analytics_tables.core.types import RefreshParams, TableType
from analytics_tables.refresh.locks import TableLocks
from analytics_tables.source.ddls import populate_date_period_structure
from analytics_tables.store.watermarks import (
    LAST_FULL_UPDATE,
    LAST_LATEST_UPDATE,
    DuckDBWatermarkStore,
)

from conftest import BEFORE_T0, ENROLLMENT_TABLE, EVENT_TABLE, T0

T1 = T0 + timedelta(days=1)


class RecordingStore:
    """Delegates to a real store and keeps every statement it was handed."""

    def __init__(self, inner, fail_on=None):
        self.inner = inner
        self.fail_on = fail_on
        self.statements = []

    def _record(self, sql):
        self.statements.append(sql)
        if self.fail_on is not None and self.fail_on(sql):
            raise RuntimeError("simulated failure")

    def execute(self, sql, params=None):
        self._record(sql)
        return self.inner.execute(sql, params)

    def query(self, sql, params=None):
        self._record(sql)
        return self.inner.query(sql, params)

    def query_df(self, sql, params=None):
        self._record(sql)
        return self.inner.query_df(sql, params)

    def transaction(self):
        return self.inner.transaction()

    def has_spatial_extension(self, sql):
        return self.inner.has_spatial_extension(sql)


def _tables(store, prefix):
    rows = store.query(
        "select table_name from information_schema.tables "
        "where table_type = 'BASE TABLE' and table_name like ? order by table_name",
        [prefix + "%"],
    )
    return [r[0] for r in rows]


def _view_rows(store, table, columns="psi"):
    return store.query(f"select {columns} from {table} order by 1")


@pytest.fixture
def three_years(source):
    source.event(1, "EvtA2018001", datetime(2018, 3, 1), values={"DeWeight001": "60"})
    source.event(2, "EvtB2020001", datetime(2020, 7, 9), values={"DeWeight001": "12.5"})
    source.event(3, "EvtC2023001", datetime(2023, 11, 30), values={"DeWeight001": "abc"})
    return source


def test_full_refresh_publishes_year_partitions(make_orchestrator, store, three_years, watermarks):
    report = make_orchestrator().run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.SUCCESS
    assert report.state is RefreshState.DONE
    assert sorted(report.subjects("succeeded")) == ["PrgMaterna1", "TetPerson01"]
    assert _tables(store, EVENT_TABLE + "_") == [
        f"{EVENT_TABLE}_2018",
        f"{EVENT_TABLE}_2020",
        f"{EVENT_TABLE}_2023",
    ]
    assert _tables(store, "analytics_temp_") == []
    assert [r[0] for r in _view_rows(store, EVENT_TABLE)] == [
        "EvtA2018001",
        "EvtB2020001",
        "EvtC2023001",
    ]
    assert watermarks.get_setting(LAST_FULL_UPDATE) == T0


def test_enrollment_table_is_partitioned_by_enrollment_date(make_orchestrator, store, three_years):
    make_orchestrator().run(RefreshParams(start_time=T0))

    assert _tables(store, ENROLLMENT_TABLE + "_") == [f"{ENROLLMENT_TABLE}_2018"]
    rows = store.query(
        'select programinstanceuid, "TeaGender01", "TeaAge00001", "TeaAge00001_LgsWeight01" '
        f"from {ENROLLMENT_TABLE}"
    )
    assert rows == [("EnrPerson01", "Female", 34, "LgLight0001")]


def test_values_are_typed_and_invalid_values_become_null(make_orchestrator, store, source):
    source.event(
        1,
        "EvtValues01",
        datetime(2020, 7, 9),
        values={
            "DeWeight001": "12.5",
            "DeVisits001": "3",
            "DeVisitDt01": "2020-07-01",
            "DeReferOu01": "OuNationa01",
            "DeSmoker001": "true",
        },
    )
    source.event(2, "EvtValues02", datetime(2020, 7, 10), values={"DeWeight001": "abc"})
    make_orchestrator().run(RefreshParams(start_time=T0))

    rows = _view_rows(
        store,
        EVENT_TABLE,
        'psi, "DeWeight001", "DeVisits001", "DeVisitDt01", "DeReferOu01_name", '
        '"DeSmoker001", "DeWeight001_LgsWeight01", "TeaGender01", "yearly"',
    )
    assert rows[0] == (
        "EvtValues01",
        12.5,
        3,
        datetime(2020, 7, 1),
        "Nation",
        1,
        "LgLight0001",
        "Female",
        "2020",
    )
    assert rows[1][:2] == ("EvtValues02", None)
    assert rows[1][6] is None


def test_events_outside_exportable_statuses_are_left_out(make_orchestrator, store, source):
    source.event(1, "EvtDone0001", datetime(2020, 1, 5))
    source.event(2, "EvtSkipped1", datetime(2020, 1, 6), status="SKIPPED")
    source.event(3, "EvtDeleted1", datetime(2020, 1, 7), deleted=True)
    make_orchestrator().run(RefreshParams(start_time=T0))

    assert [r[0] for r in _view_rows(store, EVENT_TABLE)] == ["EvtDone0001"]


def test_rows_changed_after_start_time_are_left_out(make_orchestrator, store, source):
    source.event(1, "EvtBefore01", datetime(2020, 1, 5))
    source.event(2, "EvtAfter001", datetime(2020, 1, 6), lastupdated=datetime(2024, 6, 2))
    make_orchestrator().run(RefreshParams(start_time=T0))

    assert [r[0] for r in _view_rows(store, EVENT_TABLE)] == ["EvtBefore01"]


def test_full_refresh_drops_stale_partitions(make_orchestrator, store, three_years):
    make_orchestrator().run(RefreshParams(start_time=T0))
    store.execute("update event set deleted = true where uid = 'EvtA2018001'")

    report = make_orchestrator().run(RefreshParams(start_time=T1))

    assert report.status is RunStatus.SUCCESS
    assert _tables(store, EVENT_TABLE + "_") == [f"{EVENT_TABLE}_2020", f"{EVENT_TABLE}_2023"]
    assert len(_view_rows(store, EVENT_TABLE)) == 2


def test_zero_data_builds_empty_current_year_partition(make_orchestrator, store, source):
    report = make_orchestrator().run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.SUCCESS
    assert _tables(store, EVENT_TABLE + "_") == [f"{EVENT_TABLE}_2024"]
    assert _view_rows(store, EVENT_TABLE) == []


def test_latest_update_replaces_changed_rows(make_orchestrator, store, three_years, watermarks):
    make_orchestrator().run(RefreshParams(start_time=T0))
    three_years.update_event(
        "EvtB2020001", datetime(2024, 6, 1, 13, 0), {"DeWeight001": "99"}
    )

    report = make_orchestrator().run(RefreshParams(start_time=T1, latest_update=True))

    assert report.status is RunStatus.SUCCESS
    assert report.subjects("succeeded") == ["PrgMaterna1"]
    assert [(r.subject, r.reason) for r in report.skipped] == [("TetPerson01", "no updated data")]
    assert f"{EVENT_TABLE}_latest" in _tables(store, EVENT_TABLE + "_")
    rows = _view_rows(store, EVENT_TABLE, 'psi, "DeWeight001"')
    assert rows == [("EvtA2018001", 60.0), ("EvtB2020001", 99.0), ("EvtC2023001", None)]
    assert store.query(f"select count(*) from {EVENT_TABLE}_2020") == [(0,)]
    assert watermarks.get_setting(LAST_LATEST_UPDATE) == T1
    assert watermarks.get_setting(LAST_FULL_UPDATE) == T0


def test_latest_update_rerun_is_idempotent(make_orchestrator, store, three_years, watermarks):
    make_orchestrator().run(RefreshParams(start_time=T0))
    three_years.update_event(
        "EvtB2020001", datetime(2024, 6, 1, 13, 0), {"DeWeight001": "99"}
    )
    make_orchestrator().run(RefreshParams(start_time=T1, latest_update=True))
    first = _view_rows(store, EVENT_TABLE, 'psi, "DeWeight001"')

    watermarks.delete_setting(LAST_LATEST_UPDATE)
    report = make_orchestrator().run(
        RefreshParams(start_time=T1 + timedelta(hours=1), latest_update=True)
    )

    assert report.status is RunStatus.SUCCESS
    assert _view_rows(store, EVENT_TABLE, 'psi, "DeWeight001"') == first


def test_latest_update_without_changes_skips_everything(make_orchestrator, three_years, watermarks):
    make_orchestrator().run(RefreshParams(start_time=T0))

    report = make_orchestrator().run(RefreshParams(start_time=T1, latest_update=True))

    assert report.status is RunStatus.SUCCESS
    assert report.succeeded == []
    assert {r.reason for r in report.skipped} == {"no updated data"}
    assert watermarks.get_setting(LAST_LATEST_UPDATE) == T1


def test_latest_update_requires_a_full_refresh(make_orchestrator, store, three_years, watermarks):
    spy = RecordingStore(store)
    orchestrator = make_orchestrator(store=spy)
    spy.statements.clear()

    report = orchestrator.run(RefreshParams(start_time=T1, latest_update=True))

    assert report.status is RunStatus.FAILED
    assert "full analytics table update" in report.error
    assert spy.statements == []
    assert watermarks.get_setting(LAST_LATEST_UPDATE) is None


def test_full_refresh_resets_latest_watermark(make_orchestrator, three_years, watermarks):
    watermarks.set_setting(LAST_LATEST_UPDATE, datetime(2024, 5, 1))

    make_orchestrator().run(RefreshParams(start_time=T0))

    assert watermarks.get_setting(LAST_LATEST_UPDATE) is None


def test_concurrent_refresh_is_rejected(make_orchestrator, store, three_years, watermarks):
    locks = TableLocks()
    with locks.hold([EVENT_TABLE]):
        report = make_orchestrator(locks=locks).run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.FAILED
    assert EVENT_TABLE in report.error
    assert _tables(store, EVENT_TABLE) == []
    assert watermarks.get_setting(LAST_FULL_UPDATE) is None
    assert locks.held() == set()


def test_failing_subject_does_not_stop_the_others(make_orchestrator, store, three_years, watermarks):
    failing = RecordingStore(
        store,
        fail_on=lambda sql: sql.startswith("insert into") and "analytics_temp_tei_enrollments" in sql,
    )

    report = make_orchestrator(store=failing).run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.PARTIAL_FAILURE
    assert report.subjects("succeeded") == ["PrgMaterna1"]
    assert report.subjects("failed") == ["TetPerson01"]
    assert "simulated failure" in report.failed[0].reason
    assert len(_view_rows(store, EVENT_TABLE)) == 3
    assert _tables(store, "analytics_temp_") == []
    assert _tables(store, ENROLLMENT_TABLE) == []
    assert watermarks.get_setting(LAST_FULL_UPDATE) is None


def test_raising_validation_hook_is_not_fatal(make_orchestrator, three_years, watermarks):
    def broken_hook(ctx):
        raise ValueError("hook exploded")

    report = make_orchestrator(hooks=[broken_hook]).run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.SUCCESS
    assert len(report.succeeded) == 2
    assert watermarks.get_setting(LAST_FULL_UPDATE) == T0


def test_skipped_subjects_and_table_types(make_orchestrator, store, three_years):
    report = make_orchestrator().run(
        RefreshParams(start_time=T0, skip_subjects=frozenset({"PrgMaterna1"}))
    )
    assert [(r.subject, r.reason) for r in report.skipped] == [
        ("PrgMaterna1", "excluded by request")
    ]
    assert report.subjects("succeeded") == ["TetPerson01"]
    assert _tables(store, EVENT_TABLE) == []

    report = make_orchestrator().run(
        RefreshParams(start_time=T1, skip_table_types=frozenset({TableType.ENROLLMENT}))
    )
    assert report.subjects("succeeded") == ["PrgMaterna1"]
    assert report.skipped == []


def test_from_date_limits_data_years(make_orchestrator, store, three_years):
    make_orchestrator().run(RefreshParams(start_time=T0, from_date=datetime(2020, 1, 1).date()))

    assert _tables(store, EVENT_TABLE + "_") == [f"{EVENT_TABLE}_2020", f"{EVENT_TABLE}_2023"]


def test_cancelled_run_keeps_watermarks(make_orchestrator, store, three_years, watermarks):
    orchestrator = make_orchestrator()
    orchestrator.cancel()

    report = orchestrator.run(RefreshParams(start_time=T0))

    assert report.cancelled
    assert {r.reason for r in report.skipped} == {"cancelled"}
    assert _tables(store, EVENT_TABLE) == []
    assert watermarks.get_setting(LAST_FULL_UPDATE) is None


def test_indexes_created_after_swap(make_orchestrator, settings, store, three_years):
    settings.settings.CREATE_INDEXES = True

    report = make_orchestrator(settings=settings).run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.SUCCESS
    indexes = store.query(
        "select index_name from duckdb_indexes() where table_name = ?", [f"{EVENT_TABLE}_2020"]
    )
    assert indexes
    assert all(name.startswith("in_") for (name,) in indexes)


def test_duckdb_watermark_store(store):
    marks = DuckDBWatermarkStore(store)
    assert marks.get_setting(LAST_FULL_UPDATE) is None

    marks.set_setting(LAST_FULL_UPDATE, T0)
    marks.set_setting(LAST_FULL_UPDATE, T1)
    assert marks.get_setting(LAST_FULL_UPDATE) == T1

    marks.set_setting(LAST_LATEST_UPDATE, BEFORE_T0)
    marks.delete_setting(LAST_LATEST_UPDATE)
    assert marks.get_setting(LAST_LATEST_UPDATE) is None
    assert marks.get_setting(LAST_FULL_UPDATE) == T1


def _calendar_settings(calendar, earliest, latest):
    return AnalyticsTableSettings(
        Settings(
            _env_file=None,
            CALENDAR=calendar,
            EARLIEST_YEAR=earliest,
            LATEST_YEAR=latest,
            SPATIAL_SUPPORT=False,
            CREATE_INDEXES=False,
            PARALLEL_JOBS=2,
        )
    )


def test_full_refresh_in_thai_calendar(make_orchestrator, store, source):
    populate_date_period_structure(store, 2558, 2567, get_calendar("thai"))
    source.event(1, "EvtThai0001", datetime(2018, 3, 1), values={"DeWeight001": "60"})

    report = make_orchestrator(settings=_calendar_settings("thai", 2558, 2567)).run(
        RefreshParams(start_time=T0)
    )

    assert report.status is RunStatus.SUCCESS
    assert _tables(store, EVENT_TABLE + "_") == [f"{EVENT_TABLE}_2561"]
    assert _tables(store, ENROLLMENT_TABLE + "_") == [f"{ENROLLMENT_TABLE}_2561"]
    assert _view_rows(store, EVENT_TABLE, "psi, yearly") == [("EvtThai0001", "2561")]


def test_full_refresh_splits_on_ethiopian_new_year(make_orchestrator, store, source):
    populate_date_period_structure(store, 2010, 2017, get_calendar("ethiopian"))
    source.event(1, "EvtEth20151", datetime(2023, 8, 1))
    source.event(2, "EvtEth20161", datetime(2023, 10, 1))

    report = make_orchestrator(settings=_calendar_settings("ethiopian", 2010, 2017)).run(
        RefreshParams(start_time=T0)
    )

    assert report.status is RunStatus.SUCCESS
    assert _tables(store, EVENT_TABLE + "_") == [f"{EVENT_TABLE}_2015", f"{EVENT_TABLE}_2016"]
    assert store.query(f"select psi from {EVENT_TABLE}_2016") == [("EvtEth20161",)]
    assert _view_rows(store, EVENT_TABLE, "psi, yearly") == [
        ("EvtEth20151", "2015"),
        ("EvtEth20161", "2016"),
    ]


def test_unexpected_planning_error_is_reported(make_orchestrator, store, watermarks):
    report = make_orchestrator().run(RefreshParams(start_time=T0))

    assert report.status is RunStatus.FAILED
    assert report.state is RefreshState.FAILED
    assert "does not exist" in report.error
    assert report.finished_at is not None
    assert watermarks.get_setting(LAST_FULL_UPDATE) is None


def test_swap_failure_keeps_published_tables(make_orchestrator, store, three_years, watermarks):
    make_orchestrator().run(RefreshParams(start_time=T0))
    three_years.event(4, "EvtD2020001", datetime(2020, 8, 1), values={"DeWeight001": "40"})
    staging = '"analytics_temp_event_prgmaterna1_2020"'
    failing = RecordingStore(
        store, fail_on=lambda sql: sql.startswith("alter table") and staging in sql
    )

    report = make_orchestrator(store=failing).run(RefreshParams(start_time=T1))

    assert report.status is RunStatus.PARTIAL_FAILURE
    assert report.subjects("failed") == ["PrgMaterna1"]
    assert report.subjects("succeeded") == ["TetPerson01"]
    assert "Swapping" in report.failed[0].reason
    assert [r[0] for r in _view_rows(store, EVENT_TABLE)] == [
        "EvtA2018001",
        "EvtB2020001",
        "EvtC2023001",
    ]
    assert _tables(store, "analytics_temp_") == []
    assert watermarks.get_setting(LAST_FULL_UPDATE) == T0
