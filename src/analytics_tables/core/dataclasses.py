from dataclasses import dataclass, asdict, field
from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum
import json
import pandas as pd
from analytics_tables.core.time import iso


class RefreshState(str, Enum):
    PLANNING = "planning"
    POPULATING = "populating"
    VALIDATING = "validating"
    SWAPPING = "swapping"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "completed_with_failures"
    FAILED = "failed"


@dataclass
class TestResult:
    name: str
    status: str  # "passed" | "failed" | "warn"
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DQReport:
    status: str  # "passed" if all pass, else "failed"
    results: List[TestResult]
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False, default=str)


@dataclass
class SubjectResult:
    subject: str
    table: str
    state: RefreshState
    partitions: List[str] = field(default_factory=list)
    rows: int = 0
    duration_sec: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class RefreshReport:
    mode: str
    started_at: datetime
    status: RunStatus = RunStatus.SUCCESS
    state: RefreshState = RefreshState.PLANNING
    succeeded: List[SubjectResult] = field(default_factory=list)
    skipped: List[SubjectResult] = field(default_factory=list)
    failed: List[SubjectResult] = field(default_factory=list)
    error: Optional[str] = None
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    def add(self, result: SubjectResult) -> None:
        if result.state is RefreshState.DONE:
            self.succeeded.append(result)
        elif result.state is RefreshState.FAILED:
            self.failed.append(result)
        else:
            self.skipped.append(result)

    def fail(self, error: str) -> None:
        self.status = RunStatus.FAILED
        self.state = RefreshState.FAILED
        self.error = error

    def subjects(self, bucket: str) -> List[str]:
        return [r.subject for r in getattr(self, bucket)]

    def to_payload(self) -> Dict[str, Any]:
        d = asdict(self)
        d["started_at"] = iso(self.started_at)
        if self.finished_at:
            d["finished_at"] = iso(self.finished_at)
        return d

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "subject": r.subject,
                "table": r.table,
                "outcome": bucket,
                "state": r.state.value,
                "partitions": len(r.partitions),
                "rows": r.rows,
                "duration_sec": r.duration_sec,
                "reason": r.reason,
            }
            for bucket in ("succeeded", "skipped", "failed")
            for r in getattr(self, bucket)
        ]
        return pd.DataFrame.from_records(
            rows,
            columns=[
                "subject",
                "table",
                "outcome",
                "state",
                "partitions",
                "rows",
                "duration_sec",
                "reason",
            ],
        )
