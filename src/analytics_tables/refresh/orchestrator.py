"""
Refresh orchestration.

Planning -> Populating -> Validating -> Swapping -> Done, with Failed
reachable from every state. Planning renders every statement up front so a
configuration problem stops the run before anything is written. After that
each subject is isolated: a failing subject is reported and its staging
tables dropped while the others carry on. Watermarks only move when every
subject made it and the run was not cancelled.
"""
from __future__ import annotations
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from analytics_tables.core.config import AnalyticsTableSettings
from analytics_tables.core.dataclasses import (
    RefreshReport,
    RefreshState,
    RunStatus,
    SubjectResult,
)
from analytics_tables.core.errors import (
    AnalyticsTableError,
    ConfigurationError,
    PopulationError,
    RefreshInProgressError,
    SwapError,
)
from analytics_tables.core.time import StageTimer, now_utc
from analytics_tables.core.types import RefreshParams, Table
from analytics_tables.metadata.catalog import MetadataCatalog
from analytics_tables.partition.planner import PartitionPlanner, PeriodDataProvider
from analytics_tables.refresh.full import FullRefresh
from analytics_tables.refresh.incremental import LatestPartitionUpdater
from analytics_tables.refresh.locks import TABLE_LOCKS, TableLocks
from analytics_tables.refresh.mode import RefreshMode
from analytics_tables.refresh.validation import (
    DEFAULT_HOOKS,
    ValidationContext,
    ValidationHook,
    run_hooks,
)
from analytics_tables.schema.deriver import SchemaDeriver
from analytics_tables.sql.builder import get_sql_builder
from analytics_tables.sql.generator import SqlGenerator
from analytics_tables.store.watermarks import (
    LAST_RESOURCE_TABLES_UPDATE,
    DuckDBWatermarkStore,
)
from analytics_tables.tables.base import ManagerDeps, PartitionStatements, TableManager
from analytics_tables.tables.enrollment import EnrollmentTableManager
from analytics_tables.tables.event import EventTableManager

log = structlog.get_logger(mod="refresh.orchestrator")

CANCELLED = "cancelled"


@dataclass
class RefreshDependencies:
    settings: AnalyticsTableSettings
    store: object
    watermarks: object
    generator: SqlGenerator
    planner: PartitionPlanner
    managers: List[TableManager]
    hooks: List[ValidationHook] = field(default_factory=lambda: list(DEFAULT_HOOKS))
    locks: TableLocks = TABLE_LOCKS


@dataclass
class TablePlan:
    manager: TableManager
    table: Table
    statements: List[PartitionStatements]

    @property
    def subject(self) -> str:
        return self.table.subject.uid


class RefreshOrchestrator:
    def __init__(self, deps: RefreshDependencies):
        self.deps = deps
        self.store = deps.store
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop before the next subject starts. Running statements finish."""
        log.warning("refresh.cancel_requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _mode(self, params: RefreshParams) -> RefreshMode:
        if params.latest_update:
            return LatestPartitionUpdater(self.deps.watermarks)
        return FullRefresh(self.deps.watermarks)

    # ---- run ---------------------------------------------------------------

    def run(self, params: RefreshParams) -> RefreshReport:
        report = RefreshReport(mode=params.mode, started_at=params.start_time)
        mode = self._mode(params)
        rlog = log.bind(mode=params.mode)
        rlog.info("refresh.begin", start_time=str(params.start_time))

        try:
            with StageTimer() as t:
                plans = self._plan(mode, params, report)
            rlog.info("refresh.planned", tables=len(plans), duration_sec=t.duration_sec)
        except ConfigurationError as e:
            rlog.error("refresh.planning_failed", error=str(e))
            report.fail(str(e))
            report.finished_at = now_utc()
            return report
        except Exception as e:
            rlog.exception("refresh.planning_failed", error=str(e))
            report.fail(str(e))
            report.finished_at = now_utc()
            return report

        try:
            with self.deps.locks.hold(p.table.name for p in plans):
                self._execute(mode, plans, params, report)
        except RefreshInProgressError as e:
            rlog.error("refresh.rejected", error=str(e))
            report.fail(str(e))
            report.finished_at = now_utc()
            return report

        report.cancelled = self.cancelled
        if report.failed:
            report.status = RunStatus.PARTIAL_FAILURE
        if not report.failed and not report.cancelled:
            mode.advance_watermarks(params)
        else:
            rlog.warning(
                "refresh.watermark_kept",
                failed=report.subjects("failed"),
                cancelled=report.cancelled,
            )
        report.state = RefreshState.DONE
        report.finished_at = now_utc()
        rlog.info(
            "refresh.end",
            status=report.status.value,
            succeeded=len(report.succeeded),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    # ---- planning ----------------------------------------------------------

    def _plan(self, mode: RefreshMode, params: RefreshParams, report: RefreshReport) -> List[TablePlan]:
        report.state = RefreshState.PLANNING
        mode.prepare(params)
        last_resource_update = self.deps.watermarks.get_setting(LAST_RESOURCE_TABLES_UPDATE)
        window = self.deps.planner.year_window(params)

        plans = []
        for manager in self.deps.managers:
            if manager.table_type in params.skip_table_types:
                log.info("refresh.table_type_skipped", table_type=manager.table_type.name)
                continue
            for subject in manager.subjects():
                if subject.uid in params.skip_subjects:
                    report.add(self._skipped(manager, subject, "excluded by request"))
                    continue
                table = mode.plan(manager, subject, params, last_resource_update)
                if table is None:
                    report.add(self._skipped(manager, subject, "no updated data"))
                    continue
                plans.append(TablePlan(manager, table, manager.statements(table, params, window)))
        return plans

    @staticmethod
    def _skipped(manager: TableManager, subject, reason: str) -> SubjectResult:
        name = f"{manager.table_type.prefix}_{subject.uid.lower()}"
        return SubjectResult(subject.uid, name, RefreshState.PLANNING, reason=reason)

    # ---- execution ---------------------------------------------------------

    def _execute(
        self, mode: RefreshMode, plans: Sequence[TablePlan], params: RefreshParams, report: RefreshReport
    ) -> None:
        report.state = RefreshState.POPULATING
        with ThreadPoolExecutor(max_workers=self.deps.settings.parallel_jobs) as pool:
            futures = [pool.submit(self._process, mode, plan) for plan in plans]
            for future in futures:
                report.add(future.result())

    def _process(self, mode: RefreshMode, plan: TablePlan) -> SubjectResult:
        slog = log.bind(subject=plan.subject, table=plan.table.name)
        result = SubjectResult(plan.subject, plan.table.name, RefreshState.POPULATING)
        if self.cancelled:
            result.reason = CANCELLED
            slog.info("subject.cancelled")
            return result

        with StageTimer() as t:
            try:
                result.rows = self._populate(plan, slog)
                result.state = RefreshState.VALIDATING
                self._validate(plan)
                result.state = RefreshState.SWAPPING
                self._swap(mode, plan, slog)
                result.state = RefreshState.DONE
                result.partitions = [plan.table.partition_name(p) for p in plan.table.partitions]
            except AnalyticsTableError as e:
                slog.error("subject.failed", state=result.state.value, error=str(e))
                result.state = RefreshState.FAILED
                result.reason = str(e)
                self._drop_staging(plan, slog)
        result.duration_sec = t.duration_sec

        if result.state is RefreshState.DONE and self.deps.settings.create_indexes:
            self._create_indexes(plan, slog)
        return result

    def _populate(self, plan: TablePlan, slog) -> int:
        total = 0
        for st in plan.statements:
            try:
                with StageTimer() as t:
                    self.store.execute(plan.manager.generator.drop_table(st.staging_table))
                    self.store.execute(st.create)
                    rows = self.store.execute(st.insert)
            except Exception as e:
                raise PopulationError(plan.table.name, st.partition.suffix, e) from e
            total += rows
            slog.info(
                "partition.populate.done",
                partition=st.partition.suffix,
                rows=rows,
                duration_sec=t.duration_sec,
            )
        return total

    def _validate(self, plan: TablePlan) -> None:
        ctx = ValidationContext(
            store=self.store,
            table=plan.table,
            statements=plan.statements,
            key_column=plan.manager.key_column,
            generator=plan.manager.generator,
        )
        run_hooks(ctx, self.deps.hooks)

    def _swap(self, mode: RefreshMode, plan: TablePlan, slog) -> None:
        try:
            statements = mode.swap_statements(plan.manager, plan.table)
            with self.store.transaction():
                for sql in statements:
                    self.store.execute(sql)
        except Exception as e:
            raise SwapError(plan.table.name, e) from e
        slog.info("table.swapped", statements=len(statements))

    def _drop_staging(self, plan: TablePlan, slog) -> None:
        for st in plan.statements:
            try:
                self.store.execute(plan.manager.generator.drop_table(st.staging_table))
            except Exception as e:
                slog.warning("staging.drop_failed", staging=st.staging_table, error=str(e))

    def _create_indexes(self, plan: TablePlan, slog) -> None:
        gen = plan.manager.generator
        for partition in plan.table.partitions:
            name = plan.table.partition_name(partition)
            for sql in gen.create_indexes(name, plan.table.columns):
                try:
                    self.store.execute(sql)
                except Exception as e:
                    slog.warning("index.failed", table=name, error=str(e))


def create_orchestrator(
    settings: AnalyticsTableSettings,
    store,
    catalog: MetadataCatalog,
    watermarks=None,
    hooks: Optional[List[ValidationHook]] = None,
    locks: Optional[TableLocks] = None,
) -> RefreshOrchestrator:
    builder = get_sql_builder(settings.database)
    spatial = settings.resolve_spatial_support(
        store.has_spatial_extension(builder.spatial_extension())
    )
    generator = SqlGenerator(builder)
    deriver = SchemaDeriver(
        builder,
        spatial,
        org_unit_levels=catalog.org_unit_levels(),
        org_unit_group_sets=catalog.org_unit_group_sets(),
        category_index=settings.skip_index_category_columns(),
        group_set_index=settings.skip_index_org_unit_group_set_columns(),
    )
    planner = PartitionPlanner(settings, PeriodDataProvider(store))
    watermarks = watermarks if watermarks is not None else DuckDBWatermarkStore(store)
    manager_deps = ManagerDeps(
        store=store,
        builder=builder,
        generator=generator,
        deriver=deriver,
        planner=planner,
        settings=settings,
        watermarks=watermarks,
        catalog=catalog,
    )
    deps = RefreshDependencies(
        settings=settings,
        store=store,
        watermarks=watermarks,
        generator=generator,
        planner=planner,
        managers=[EventTableManager(manager_deps), EnrollmentTableManager(manager_deps)],
    )
    if hooks is not None:
        deps.hooks = list(hooks)
    if locks is not None:
        deps.locks = locks
    log.info("orchestrator.ready", database=settings.database.value, spatial=spatial)
    return RefreshOrchestrator(deps)
