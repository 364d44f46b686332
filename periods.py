import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


class InvalidMonthKey(ValueError):
    pass


@dataclass(frozen=True, order=True)
class MonthKey:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidMonthKey(f"Month must be between 1 and 12, got {self.month}")
        if not 1970 <= self.year <= 3000:
            raise InvalidMonthKey(f"Year out of range: {self.year}")

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return self.shift(1).first_day - date.resolution

    def shift(self, offset: int) -> "MonthKey":
        total = self.year * 12 + (self.month - 1) + offset
        return MonthKey(total // 12, total % 12 + 1)

    @classmethod
    def for_date(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)


def parse_month_key(value: str) -> MonthKey:
    match = _MONTH_KEY_RE.match((value or "").strip())
    if not match:
        raise InvalidMonthKey(f"Month key must look like YYYY-MM, got {value!r}")
    return MonthKey(int(match.group(1)), int(match.group(2)))


def current_month_key(today: Optional[date] = None) -> MonthKey:
    return MonthKey.for_date(today or date.today())


# Periods before this month only exist as monthly snapshot entries.
LEDGER_CUTOFF = MonthKey(2025, 12)


def uses_legacy_ledger(key: MonthKey) -> bool:
    return key < LEDGER_CUTOFF
