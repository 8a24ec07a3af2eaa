"""Shared enums for trailing windows and coverage milestones."""

from enum import Enum

SECONDS_PER_DAY = 86_400


class Timeframe(str, Enum):
    """Trailing window a consumer can display."""

    ONE_DAY = "24H"
    SEVEN_DAYS = "7D"
    THIRTY_DAYS = "30D"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"

    @property
    def days(self) -> int:
        return _TIMEFRAME_DAYS[self]

    @property
    def is_extended(self) -> bool:
        """True for windows served by the monthly endpoint (beyond 30 days)."""
        return self in EXTENDED_TIMEFRAMES


_TIMEFRAME_DAYS = {
    Timeframe.ONE_DAY: 1,
    Timeframe.SEVEN_DAYS: 7,
    Timeframe.THIRTY_DAYS: 30,
    Timeframe.THREE_MONTHS: 90,
    Timeframe.SIX_MONTHS: 180,
    Timeframe.ONE_YEAR: 365,
}

ALL_TIMEFRAMES: tuple[Timeframe, ...] = tuple(Timeframe)

SHORT_TIMEFRAMES: tuple[Timeframe, ...] = (Timeframe.ONE_DAY, Timeframe.SEVEN_DAYS)

EXTENDED_TIMEFRAMES: tuple[Timeframe, ...] = (
    Timeframe.THREE_MONTHS,
    Timeframe.SIX_MONTHS,
    Timeframe.ONE_YEAR,
)


class Milestone(str, Enum):
    """Cumulative coverage thresholds that unlock windows."""

    SEVEN_DAYS = "7d"
    FOURTEEN_DAYS = "14d"  # silent: enables the 7D previous-period comparison
    THIRTY_DAYS = "30d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])


def milestones_up_to(days: int) -> list[Milestone]:
    """Milestones whose threshold is covered by `days`, in ascending order."""
    return [m for m in Milestone if m.days <= days]
