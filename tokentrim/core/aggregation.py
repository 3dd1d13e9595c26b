"""
Period aggregation of the invocation ledger.

Rolls InvocationRecords up into per-day, per-week or per-month statistics.

Aggregation rules:
1. Only command_count, input_units and output_units are summed
2. saved_units and savings_pct are always derived from the summed totals,
   never summed or averaged across rows
3. A trailing TOTAL row is derived the same way over the whole input
4. Empty input yields no rows at all, not a zero-filled TOTAL row
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .periods import Granularity, PeriodKey, period_key_for
from tokentrim.storage.models import InvocationRecord

TOTAL_LABEL = "TOTAL"


@dataclass(frozen=True)
class PeriodStats:
    """Derived statistics for one period, or for everything (TOTAL).

    Invariants: output_units == input_units - saved_units and
    0 <= savings_pct <= 100.
    """
    period_key: Optional[PeriodKey]
    command_count: int
    input_units: int
    output_units: int
    saved_units: int
    savings_pct: float

    @property
    def is_total(self) -> bool:
        return self.period_key is None

    @property
    def label(self) -> str:
        return TOTAL_LABEL if self.period_key is None else self.period_key.label

    @classmethod
    def from_totals(
        cls,
        period_key: Optional[PeriodKey],
        command_count: int,
        input_units: int,
        output_units: int,
    ) -> "PeriodStats":
        """Build stats from summed totals, deriving savings.

        A compacted total larger than the raw total counts as zero savings,
        and the reported output is clamped so the invariant holds exactly.
        """
        saved = max(input_units - output_units, 0)
        pct = (saved / input_units * 100.0) if input_units > 0 else 0.0
        return cls(
            period_key=period_key,
            command_count=command_count,
            input_units=input_units,
            output_units=input_units - saved,
            saved_units=saved,
            savings_pct=pct,
        )


class _Accumulator:
    __slots__ = ("commands", "input_units", "output_units")

    def __init__(self):
        self.commands = 0
        self.input_units = 0
        self.output_units = 0

    def add(self, record: InvocationRecord) -> None:
        self.commands += 1
        self.input_units += record.raw_unit_count
        self.output_units += record.compacted_unit_count

    def to_stats(self, key: Optional[PeriodKey]) -> PeriodStats:
        return PeriodStats.from_totals(key, self.commands, self.input_units, self.output_units)


def stats_by_key(
    records: Iterable[InvocationRecord],
    granularity: Granularity,
) -> Dict[PeriodKey, PeriodStats]:
    """Group records by period and reduce each group.

    Args:
        records: Ledger entries, in any order
        granularity: How to bucket timestamps

    Returns:
        Mapping of period key to its statistics (no TOTAL entry)
    """
    buckets: Dict[PeriodKey, _Accumulator] = {}
    for record in records:
        key = period_key_for(record.timestamp, granularity)
        buckets.setdefault(key, _Accumulator()).add(record)
    return {key: acc.to_stats(key) for key, acc in buckets.items()}


def summarize(records: Iterable[InvocationRecord]) -> Optional[PeriodStats]:
    """Compute the TOTAL row over all records, or None when there are none."""
    acc = _Accumulator()
    for record in records:
        acc.add(record)
    if acc.commands == 0:
        return None
    return acc.to_stats(None)


def aggregate(
    records: Iterable[InvocationRecord],
    granularity: Granularity,
) -> List[PeriodStats]:
    """Aggregate ledger entries into ordered period rows plus a TOTAL row.

    Args:
        records: Ledger entries, in any order
        granularity: Day, week or month (or any registered granularity)

    Returns:
        Period rows in ascending key order followed by the TOTAL row, or an
        empty list when there are no records
    """
    records = list(records)
    by_key = stats_by_key(records, granularity)
    if not by_key:
        return []
    rows = [by_key[key] for key in sorted(by_key)]
    total = summarize(records)
    rows.append(total)
    return rows


def stats_by_tool(records: Iterable[InvocationRecord]) -> List[Tuple[str, PeriodStats]]:
    """Per-tool totals across all periods, most units saved first."""
    buckets: Dict[str, _Accumulator] = {}
    for record in records:
        buckets.setdefault(record.tool_id, _Accumulator()).add(record)
    rows = [(tool_id, acc.to_stats(None)) for tool_id, acc in buckets.items()]
    rows.sort(key=lambda item: (-item[1].saved_units, item[0]))
    return rows
