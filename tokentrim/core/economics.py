"""
Economics merge of local savings with an external cost feed.

Joins per-period PeriodStats with per-period EconomicsRecords to estimate
what the avoided tokens were worth.

Merge rules:
1. Output covers the union of keys from both sources, ascending
2. A side that has no entry for a key stays None, never zero
3. Dollar estimates are only derived when both sides are present
4. Totals recompute percentages from summed units instead of averaging
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .aggregation import PeriodStats
from .periods import PeriodKey


@dataclass(frozen=True)
class EconomicsRecord:
    """Cost data for one period as reported by the external feed.

    active_cost is the cost per active (input + output) token; blended_rate
    is the cost per token including cache reads and writes.
    """
    period_key: PeriodKey
    spend_amount: float
    active_cost: Optional[float] = None
    blended_rate: Optional[float] = None
    total_tokens: Optional[int] = None
    active_tokens: Optional[int] = None

    @classmethod
    def from_usage(
        cls,
        period_key: PeriodKey,
        spend_amount: float,
        total_tokens: int,
        active_tokens: int,
    ) -> "EconomicsRecord":
        """Derive per-token rates from spend and token totals.

        Rates are left unset when their denominator is zero.
        """
        return cls(
            period_key=period_key,
            spend_amount=spend_amount,
            active_cost=spend_amount / active_tokens if active_tokens > 0 else None,
            blended_rate=spend_amount / total_tokens if total_tokens > 0 else None,
            total_tokens=total_tokens,
            active_tokens=active_tokens,
        )


@dataclass
class MergedEconomicsRow:
    """One period of the combined report. Every field is independently optional."""
    period_key: PeriodKey
    spend_amount: Optional[float] = None
    saved_units: Optional[int] = None
    active_cost: Optional[float] = None
    blended_rate: Optional[float] = None
    command_count: Optional[int] = None
    input_units: Optional[int] = None
    savings_pct: Optional[float] = None
    total_tokens: Optional[int] = None
    active_tokens: Optional[int] = None
    savings_active: Optional[float] = None
    savings_blended: Optional[float] = None

    @property
    def label(self) -> str:
        return self.period_key.label

    @property
    def has_local(self) -> bool:
        return self.command_count is not None

    @property
    def has_feed(self) -> bool:
        return self.spend_amount is not None

    def set_local(self, stats: PeriodStats) -> None:
        self.command_count = stats.command_count
        self.saved_units = stats.saved_units
        self.input_units = stats.input_units
        self.savings_pct = stats.savings_pct

    def set_feed(self, record: EconomicsRecord) -> None:
        self.spend_amount = record.spend_amount
        self.active_cost = record.active_cost
        self.blended_rate = record.blended_rate
        self.total_tokens = record.total_tokens
        self.active_tokens = record.active_tokens

    def compute_dual_metrics(self) -> None:
        if self.saved_units is None or self.spend_amount is None:
            return
        if self.active_cost is not None:
            self.savings_active = self.saved_units * self.active_cost
        if self.blended_rate is not None:
            self.savings_blended = self.saved_units * self.blended_rate


def merge(
    local_stats_by_key: Mapping[PeriodKey, PeriodStats],
    feed_records_by_key: Optional[Mapping[PeriodKey, EconomicsRecord]],
) -> List[MergedEconomicsRow]:
    """Merge local savings and feed costs over the union of their keys.

    Args:
        local_stats_by_key: Local rollups (TOTAL rows are ignored)
        feed_records_by_key: Feed records, or None when the feed is unavailable

    Returns:
        One row per key present in either source, ascending by key
    """
    rows: Dict[PeriodKey, MergedEconomicsRow] = {}

    for key, record in (feed_records_by_key or {}).items():
        rows.setdefault(key, MergedEconomicsRow(period_key=key)).set_feed(record)

    for key, stats in local_stats_by_key.items():
        if key is None or stats.is_total:
            continue
        rows.setdefault(key, MergedEconomicsRow(period_key=key)).set_local(stats)

    result = [rows[key] for key in sorted(rows)]
    for row in result:
        row.compute_dual_metrics()
    return result


@dataclass
class EconomicsTotals:
    """Totals across merged rows.

    Token rates are recomputed from summed spend and summed feed token
    counts, and savings_pct from summed local units.
    """
    spend_amount: float = 0.0
    total_tokens: int = 0
    active_tokens: int = 0
    command_count: int = 0
    input_units: int = 0
    saved_units: int = 0
    savings_pct: float = 0.0
    active_cost: Optional[float] = None
    blended_rate: Optional[float] = None
    savings_active: Optional[float] = None
    savings_blended: Optional[float] = None
    periods: List[str] = field(default_factory=list)


def compute_totals(rows: List[MergedEconomicsRow]) -> EconomicsTotals:
    """Sum merged rows and derive global rates and savings estimates."""
    totals = EconomicsTotals()
    for row in rows:
        totals.periods.append(row.label)
        if row.spend_amount is not None:
            totals.spend_amount += row.spend_amount
        if row.total_tokens is not None:
            totals.total_tokens += row.total_tokens
        if row.active_tokens is not None:
            totals.active_tokens += row.active_tokens
        if row.command_count is not None:
            totals.command_count += row.command_count
        if row.input_units is not None:
            totals.input_units += row.input_units
        if row.saved_units is not None:
            totals.saved_units += row.saved_units

    if totals.input_units > 0:
        totals.savings_pct = totals.saved_units / totals.input_units * 100.0

    if totals.total_tokens > 0:
        totals.blended_rate = totals.spend_amount / totals.total_tokens
        totals.savings_blended = totals.saved_units * totals.blended_rate
    if totals.active_tokens > 0:
        totals.active_cost = totals.spend_amount / totals.active_tokens
        totals.savings_active = totals.saved_units * totals.active_cost

    return totals
