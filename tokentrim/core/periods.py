"""
Period keys for day, ISO week and calendar month rollups.

Each granularity is a registered variant that knows how to map a timestamp
to the start date of its bucket and how to label that bucket. New
granularities are added with register_granularity rather than by extending
a central conditional.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Union


@dataclass(frozen=True, order=True)
class Granularity:
    """A named way of bucketing timestamps into periods.

    Granularities compare by name only.
    """
    name: str
    bucket_start: Callable[[date], date] = field(compare=False, repr=False)
    label_format: str = field(compare=False, default="%Y-%m-%d")


def _day_start(d: date) -> date:
    return d


def _iso_week_start(d: date) -> date:
    # ISO weeks start on Monday
    return d - timedelta(days=d.weekday())


def _month_start(d: date) -> date:
    return d.replace(day=1)


_GRANULARITIES: Dict[str, Granularity] = {}


def register_granularity(granularity: Granularity) -> Granularity:
    """Make a granularity available by name.

    Raises:
        ValueError: If the name is already registered
    """
    if granularity.name in _GRANULARITIES:
        raise ValueError(f"Granularity already registered: {granularity.name}")
    _GRANULARITIES[granularity.name] = granularity
    return granularity


def get_granularity(name: str) -> Granularity:
    """Look up a registered granularity by name.

    Raises:
        ValueError: If no granularity has that name
    """
    try:
        return _GRANULARITIES[name]
    except KeyError:
        valid = sorted(_GRANULARITIES)
        raise ValueError(f"Unknown granularity '{name}', expected one of: {valid}")


DAY = register_granularity(Granularity("day", _day_start, "%Y-%m-%d"))
WEEK = register_granularity(Granularity("week", _iso_week_start, "%Y-%m-%d"))
MONTH = register_granularity(Granularity("month", _month_start, "%Y-%m"))


@dataclass(frozen=True, order=True)
class PeriodKey:
    """Totally ordered key of one period bucket.

    Ordering compares the bucket start date, which matches chronological
    order within a granularity; keys with the same start fall back to the
    granularity name. Week keys are labelled by their Monday.
    """
    start: date
    granularity: Granularity

    @property
    def label(self) -> str:
        return self.start.strftime(self.granularity.label_format)

    def __str__(self) -> str:
        return self.label


def period_key_for(moment: Union[datetime, date], granularity: Granularity) -> PeriodKey:
    """Derive the period a timestamp falls into.

    The whole timestamp is mapped through its calendar date, so a single
    timestamp can never land in two buckets.
    """
    day = moment.date() if isinstance(moment, datetime) else moment
    return PeriodKey(granularity.bucket_start(day), granularity)


def parse_period_label(label: str, granularity: Granularity) -> PeriodKey:
    """Parse a period label such as '2026-01-28', '2026-01' or a week Monday.

    Week labels that are not Mondays are normalised to the Monday of their
    ISO week.

    Raises:
        ValueError: If the label does not match the granularity's format
    """
    parsed = datetime.strptime(label.strip(), granularity.label_format).date()
    return period_key_for(parsed, granularity)
