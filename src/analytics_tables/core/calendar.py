from __future__ import annotations
from abc import ABC, abstractmethod
from calendar import isleap
from datetime import datetime, timezone

from analytics_tables.core.errors import ConfigurationError
from analytics_tables.core.time import as_utc


class Calendar(ABC):
    """Maps calendar years of an installation to absolute instants (UTC)."""

    name: str

    @abstractmethod
    def start_of_year(self, year: int) -> datetime: ...

    @abstractmethod
    def year_of(self, instant: datetime) -> int: ...

    def end_of_year(self, year: int) -> datetime:
        # exclusive upper bound
        return self.start_of_year(year + 1)


class GregorianCalendar(Calendar):
    name = "iso8601"

    def start_of_year(self, year: int) -> datetime:
        return datetime(year, 1, 1, tzinfo=timezone.utc)

    def year_of(self, instant: datetime) -> int:
        return as_utc(instant).year


class ThaiCalendar(Calendar):
    """Buddhist era: same boundaries as Gregorian, years offset by 543."""

    name = "thai"
    OFFSET = 543

    def start_of_year(self, year: int) -> datetime:
        return datetime(year - self.OFFSET, 1, 1, tzinfo=timezone.utc)

    def year_of(self, instant: datetime) -> int:
        return as_utc(instant).year + self.OFFSET


class EthiopianCalendar(Calendar):
    """
    New year (Meskerem 1) falls on 11 September, or on 12 September when the
    following Gregorian year is a leap year. Valid for 1900-2099.
    """

    name = "ethiopian"

    def start_of_year(self, year: int) -> datetime:
        gregorian_year = year + 7
        day = 12 if isleap(gregorian_year + 1) else 11
        return datetime(gregorian_year, 9, day, tzinfo=timezone.utc)

    def year_of(self, instant: datetime) -> int:
        instant = as_utc(instant)
        candidate = instant.year - 7
        if instant >= self.start_of_year(candidate):
            return candidate
        return candidate - 1


_CALENDARS = {
    c.name: c for c in (GregorianCalendar(), ThaiCalendar(), EthiopianCalendar())
}


def get_calendar(name: str) -> Calendar:
    key = (name or "").strip().lower()
    if key in ("gregorian", "iso"):
        key = "iso8601"
    try:
        return _CALENDARS[key]
    except KeyError:
        raise ConfigurationError(
            f"Calendar '{name}' is not supported, allowed options: "
            f"{', '.join(sorted(_CALENDARS))}"
        ) from None
