"""Post-population checks run against staging tables before the swap."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Sequence

import structlog

from analytics_tables.core.dataclasses import DQReport, TestResult
from analytics_tables.core.types import Table
from analytics_tables.sql.generator import SqlGenerator
from analytics_tables.tables.base import PartitionStatements

log = structlog.get_logger(mod="refresh.validation")


@dataclass
class ValidationContext:
    store: object
    table: Table
    statements: Sequence[PartitionStatements]
    key_column: str
    generator: SqlGenerator


ValidationHook = Callable[[ValidationContext], List[TestResult]]


def _count(store, sql: str) -> int:
    df = store.query_df(sql)
    return int(df.iloc[0, 0]) if not df.empty else 0


def check_row_count(ctx: ValidationContext) -> List[TestResult]:
    results = []
    for st in ctx.statements:
        rows = _count(ctx.store, ctx.generator.count_rows(st.staging_table))
        results.append(
            TestResult(
                f"row_count:{st.partition.suffix}",
                "passed" if rows > 0 else "warn",
                {"rows": rows, "table": st.staging_table},
            )
        )
    return results


def check_key_unique(ctx: ValidationContext) -> List[TestResult]:
    gen = ctx.generator
    results = []
    for st in ctx.statements:
        null_cnt = _count(ctx.store, gen.count_nulls(st.staging_table, ctx.key_column))
        dup_cnt = _count(ctx.store, gen.count_duplicates(st.staging_table, ctx.key_column))
        results.append(
            TestResult(
                f"key_unique:{st.partition.suffix}",
                "passed" if null_cnt == 0 and dup_cnt == 0 else "failed",
                {"null_rows": null_cnt, "duplicate_keys": dup_cnt},
            )
        )
    return results


def check_partition_year(ctx: ValidationContext) -> List[TestResult]:
    if ctx.table.column("yearly") is None:
        return []
    results = []
    for st in ctx.statements:
        if st.partition.is_latest:
            continue
        df = ctx.store.query_df(ctx.generator.distinct_values(st.staging_table, "yearly"))
        found = sorted(str(v) for v in df["yearly"].dropna().tolist())
        ok = found in ([], [str(st.partition.key)])
        results.append(
            TestResult(
                f"partition_matches_key:{st.partition.suffix}",
                "passed" if ok else "failed",
                {"found": found, "expected": st.partition.key},
            )
        )
    return results


DEFAULT_HOOKS: List[ValidationHook] = [check_row_count, check_key_unique, check_partition_year]


def run_hooks(ctx: ValidationContext, hooks: Sequence[ValidationHook]) -> DQReport:
    results: List[TestResult] = []
    for hook in hooks:
        name = getattr(hook, "__name__", type(hook).__name__)
        try:
            results.extend(hook(ctx))
        except Exception as e:
            # hooks never decide the fate of a table
            log.warning("validation.hook_error", table=ctx.table.name, hook=name, error=str(e))
            results.append(TestResult(f"hook_error:{name}", "warn", {"error": str(e)}))

    failed = [r.name for r in results if r.status == "failed"]
    report = DQReport(
        status="failed" if failed else "passed",
        results=results,
        summary={"failed": failed, "checks": len(results)},
    )
    if failed:
        log.warning("validation.failed", table=ctx.table.name, failed=failed)
    else:
        log.info("validation.passed", table=ctx.table.name, checks=len(results))
    return report
