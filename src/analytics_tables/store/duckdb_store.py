from __future__ import annotations
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Protocol, Sequence

import duckdb
import pandas as pd
import structlog

log = structlog.get_logger(mod="store.duckdb")


class RelationalStore(Protocol):
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int: ...

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]: ...

    def transaction(self): ...

    def has_spatial_extension(self, sql: str) -> bool: ...


class DuckDBStore:
    """
    Relational store over one DuckDB database.

    Each thread gets its own cursor so the worker pool can populate tables
    side by side; a transaction is bound to the cursor of the thread that
    opened it.
    """

    def __init__(self, con: duckdb.DuckDBPyConnection):
        self.con = con
        self._local = threading.local()
        self._cursors: List[duckdb.DuckDBPyConnection] = []
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, path: str | Path = ":memory:") -> "DuckDBStore":
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return cls(duckdb.connect(str(path)))

    def cursor(self) -> duckdb.DuckDBPyConnection:
        cur = getattr(self._local, "cursor", None)
        if cur is None:
            cur = self.con.cursor()
            self._local.cursor = cur
            with self._lock:
                self._cursors.append(cur)
        return cur

    def _run(self, sql: str, params: Optional[Sequence[Any]]):
        cur = self.cursor()
        if params is None:
            cur.execute(sql)
        else:
            cur.execute(sql, params)
        return cur

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run one statement; returns the affected row count (0 for DDL)."""
        cur = self._run(sql, params)
        if cur.description is None:
            return 0
        rows = cur.fetchall()
        if rows and len(rows[0]) == 1 and isinstance(rows[0][0], int):
            return int(rows[0][0])
        return 0

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        cur = self._run(sql, params)
        return cur.fetchall()

    def query_df(self, sql: str, params: Optional[Sequence[Any]] = None) -> pd.DataFrame:
        cur = self._run(sql, params)
        return cur.df()

    @contextmanager
    def transaction(self) -> Iterator["DuckDBStore"]:
        cur = self.cursor()
        cur.execute("BEGIN;")
        try:
            yield self
            cur.execute("COMMIT;")
        except Exception:
            cur.execute("ROLLBACK;")
            log.warning("transaction.rolled_back")
            raise

    def has_spatial_extension(self, sql: str) -> bool:
        try:
            return bool(self.query(sql))
        except duckdb.Error as e:
            log.warning("spatial.detect_failed", error=str(e))
            return False

    def close(self) -> None:
        with self._lock:
            cursors, self._cursors = self._cursors, []
        for cur in cursors:
            cur.close()
        self.con.close()
