from __future__ import annotations
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, Set

import structlog

from analytics_tables.core.errors import RefreshInProgressError

log = structlog.get_logger(mod="refresh.locks")


class TableLocks:
    """Process-wide registry of tables with a refresh in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._held: Set[str] = set()

    def held(self) -> Set[str]:
        with self._lock:
            return set(self._held)

    @contextmanager
    def hold(self, names: Iterable[str]) -> Iterator[None]:
        names = set(names)
        with self._lock:
            busy = names & self._held
            if busy:
                log.warning("locks.rejected", tables=sorted(busy))
                raise RefreshInProgressError(busy)
            self._held |= names
        try:
            yield
        finally:
            with self._lock:
                self._held -= names


TABLE_LOCKS = TableLocks()
