"""Command line trigger for analytics table refreshes."""
from __future__ import annotations
import argparse
import sys
from datetime import date
from typing import List, Optional

import structlog

from analytics_tables.core.config import AnalyticsTableSettings, Database, Settings
from analytics_tables.core.dataclasses import RunStatus
from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.json import dumps, write_json
from analytics_tables.core.logging import configure_logging
from analytics_tables.core.time import now_utc
from analytics_tables.core.types import RefreshParams, TableType
from analytics_tables.metadata.catalog import MetadataCatalog
from analytics_tables.refresh.orchestrator import create_orchestrator
from analytics_tables.source.ddls import init_source
from analytics_tables.store.duckdb_store import DuckDBStore
from analytics_tables.store.watermarks import DuckDBWatermarkStore

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.PARTIAL_FAILURE: 1,
    RunStatus.FAILED: 2,
}

TABLE_TYPES = {"event": TableType.EVENT, "enrollment": TableType.ENROLLMENT}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="analytics-tables-refresh")
    p.add_argument("--db", default=None, help="DuckDB file (default: ANALYTICS_DB_PATH)")
    p.add_argument("--metadata", default=None, help="metadata YAML (default: ANALYTICS_METADATA_PATH)")
    p.add_argument("--latest", action="store_true", help="update the latest partition only")
    p.add_argument("--skip-subject", action="append", default=[], metavar="UID")
    p.add_argument(
        "--skip-table-type", action="append", default=[], choices=sorted(TABLE_TYPES)
    )
    p.add_argument("--from-date", type=date.fromisoformat, default=None)
    p.add_argument(
        "--init-source",
        action="store_true",
        help="create source and resource tables before refreshing",
    )
    p.add_argument("--report", default=None, metavar="PATH", help="also write the JSON report to PATH")
    p.add_argument("--log-level", default="INFO")
    p.add_argument("--json-logs", action="store_true")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.json_logs, args.log_level)
    log = structlog.get_logger(mod="refresh.cli")

    overrides = {}
    if args.db:
        overrides["DB_PATH"] = args.db
    if args.metadata:
        overrides["METADATA_PATH"] = args.metadata

    try:
        settings = AnalyticsTableSettings(Settings(**overrides))
        if settings.database is not Database.DUCKDB:
            raise ConfigurationError(
                f"Database '{settings.database.value}' can be rendered but not executed here"
            )
        catalog = MetadataCatalog.load(settings.settings.METADATA_PATH)
    except ConfigurationError as e:
        log.error("cli.configuration_error", error=str(e))
        print(dumps({"status": RunStatus.FAILED.value, "error": str(e)}))
        return EXIT_CODES[RunStatus.FAILED]

    store = DuckDBStore.connect(settings.settings.DB_PATH)
    try:
        watermarks = DuckDBWatermarkStore(store)
        start_time = now_utc()
        if args.init_source:
            current = settings.calendar.year_of(start_time)
            earliest, latest = settings.supported_year_bounds
            offset = settings.max_period_years_offset or 10
            init_source(
                store,
                catalog,
                first_year=earliest if earliest is not None else current - offset,
                last_year=latest if latest is not None else current + 1,
                watermarks=watermarks,
                spatial=bool(settings.settings.SPATIAL_SUPPORT),
                now=start_time,
                calendar=settings.calendar,
            )

        params = RefreshParams(
            start_time=start_time,
            latest_update=args.latest,
            skip_subjects=frozenset(args.skip_subject),
            skip_table_types=frozenset(TABLE_TYPES[t] for t in args.skip_table_type),
            from_date=args.from_date,
        )
        structlog.contextvars.bind_contextvars(
            run_mode=params.mode, start_time=start_time.isoformat()
        )
        try:
            orchestrator = create_orchestrator(settings, store, catalog, watermarks=watermarks)
        except ConfigurationError as e:
            log.error("cli.configuration_error", error=str(e))
            print(dumps({"status": RunStatus.FAILED.value, "error": str(e)}))
            return EXIT_CODES[RunStatus.FAILED]

        report = orchestrator.run(params)
        print(dumps(report.to_payload()))
        if args.report:
            write_json(args.report, report.to_payload())
        if report.succeeded or report.failed:
            log.info("cli.summary", table=report.to_frame().to_dict(orient="records"))
        return EXIT_CODES[report.status]
    finally:
        structlog.contextvars.clear_contextvars()
        store.close()


if __name__ == "__main__":
    sys.exit(main())
