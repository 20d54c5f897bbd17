from datetime import datetime, timezone
import time

LONG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    return as_utc(dt).isoformat()


def as_utc(dt: datetime) -> datetime:
    # naive values are UTC by convention (DuckDB TIMESTAMP columns are naive)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def naive_utc(dt: datetime) -> datetime:
    return as_utc(dt).replace(tzinfo=None)


def to_long_date(dt: datetime) -> str:
    """Fixed lexical form used when a timestamp is rendered into SQL."""
    return naive_utc(dt).strftime(LONG_DATE_FORMAT)


def latest(*dates: datetime | None) -> datetime | None:
    present = [as_utc(d) for d in dates if d is not None]
    return max(present) if present else None


class StageTimer:
    def __enter__(self):
        self.t0 = time.time()
        self.duration_sec = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_sec = round(time.time() - self.t0, 3)
