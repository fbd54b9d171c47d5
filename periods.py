from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True, order=True)
class MonthKey:
    """Canonical (year, month) identity of a calendar month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Year must be between 1 and 9999, got {self.year}")
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def of(cls, d: date) -> "MonthKey":
        return cls(d.year, d.month)

    @property
    def index(self) -> int:
        return self.year * 12 + (self.month - 1)

    def shift(self, count: int) -> "MonthKey":
        month_index = self.index + count
        return MonthKey(month_index // 12, (month_index % 12) + 1)

    def previous(self) -> "MonthKey":
        return self.shift(-1)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return self.shift(1).start - date.resolution

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def month_period(key: MonthKey) -> Period:
    return Period(str(key), key.start, key.end)


def trend_window(anchor: MonthKey, size: int) -> list[MonthKey]:
    """Return `size` consecutive months ending with `anchor`, oldest first."""
    if size < 1:
        raise ValueError("Trend window must contain at least one month")
    return [anchor.shift(offset) for offset in range(-(size - 1), 1)]


def window_period(months: list[MonthKey]) -> Period:
    return Period("window", months[0].start, months[-1].end)


def month_label(key: MonthKey) -> str:
    return f"{key.year}年{key.month}月"


def local_today(now: Optional[datetime] = None) -> date:
    """Today's date in the configured timezone."""
    tz = ZoneInfo(get_settings().timezone)
    if now is None:
        return datetime.now(tz).date()
    return now.astimezone(tz).date()


def clamp_to_month(key: MonthKey, day: int) -> date:
    """The given day of month `key`, capped at its last day."""
    return key.start.replace(day=min(day, key.end.day))
