from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional

from analytics_tables.core.types import RefreshParams, Table
from analytics_tables.tables.base import TableManager


class RefreshMode(ABC):
    """What a full or latest refresh does differently: planning, swap and watermarks."""

    name: str

    def __init__(self, watermarks):
        self.watermarks = watermarks

    def prepare(self, params: RefreshParams) -> None:
        """Checks that must pass before any statement runs."""

    @abstractmethod
    def plan(
        self, manager: TableManager, subject, params: RefreshParams, last_resource_update=None
    ) -> Optional[Table]:
        """The table to build, or None when the subject has nothing to refresh."""

    @abstractmethod
    def swap_statements(self, manager: TableManager, table: Table) -> List[str]: ...

    @abstractmethod
    def advance_watermarks(self, params: RefreshParams) -> None: ...
