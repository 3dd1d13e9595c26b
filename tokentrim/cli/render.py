"""
Presentation of accounting data: Rich tables, JSON documents and CSV.

Missing values are rendered as MISSING, never as zero, so a period without
feed data cannot be mistaken for a period that cost nothing.
"""

import csv
import io
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rich.table import Table

from tokentrim.core.aggregation import PeriodStats
from tokentrim.core.economics import EconomicsTotals, MergedEconomicsRow

MISSING = "—"

PERIOD_FIELDS = ("period", "commands", "input_units", "output_units", "saved_units", "savings_pct")
ECONOMICS_FIELDS = (
    "period", "spend", "commands", "saved_units", "savings_pct",
    "active_cost", "blended_rate", "savings_active", "savings_blended",
)


def format_units(n: int) -> str:
    """Compact unit count: 1.2M, 59.2K, 830."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)


def format_currency(amount: Optional[float]) -> str:
    if amount is None:
        return MISSING
    return f"${amount:,.2f}"


def format_rate(rate: Optional[float]) -> str:
    """Per-token rate shown per million tokens."""
    if rate is None:
        return MISSING
    return f"${rate * 1_000_000:,.2f}/M"


def _optional(value, fmt) -> str:
    return MISSING if value is None else fmt(value)


def period_table(rows: Sequence[PeriodStats], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Period")
    table.add_column("Cmds", justify="right")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Save%", justify="right")
    for row in rows:
        style = "bold" if row.is_total else None
        table.add_row(
            row.label,
            str(row.command_count),
            format_units(row.input_units),
            format_units(row.output_units),
            format_units(row.saved_units),
            f"{row.savings_pct:.1f}%",
            style=style,
        )
    return table


def tool_table(rows: Sequence[Tuple[str, PeriodStats]], limit: int = 10) -> Table:
    table = Table(title="By command")
    table.add_column("Command")
    table.add_column("Count", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Save%", justify="right")
    for tool_id, stats in rows[:limit]:
        table.add_row(
            tool_id,
            str(stats.command_count),
            format_units(stats.saved_units),
            f"{stats.savings_pct:.1f}%",
        )
    return table


def economics_table(rows: Sequence[MergedEconomicsRow], totals: EconomicsTotals, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Period")
    table.add_column("Spend", justify="right")
    table.add_column("Cmds", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Save%", justify="right")
    table.add_column("Active $/tok", justify="right")
    table.add_column("Blended $/tok", justify="right")
    table.add_column("Saved (active)", justify="right")
    table.add_column("Saved (blended)", justify="right")
    for row in rows:
        table.add_row(
            row.label,
            format_currency(row.spend_amount),
            _optional(row.command_count, str),
            _optional(row.saved_units, format_units),
            _optional(row.savings_pct, lambda pct: f"{pct:.1f}%"),
            format_rate(row.active_cost),
            format_rate(row.blended_rate),
            format_currency(row.savings_active),
            format_currency(row.savings_blended),
        )
    table.add_row(
        "TOTAL",
        format_currency(totals.spend_amount),
        str(totals.command_count),
        format_units(totals.saved_units),
        f"{totals.savings_pct:.1f}%",
        format_rate(totals.active_cost),
        format_rate(totals.blended_rate),
        format_currency(totals.savings_active),
        format_currency(totals.savings_blended),
        style="bold",
    )
    return table


def period_record(row: PeriodStats) -> Dict[str, Any]:
    return {
        "period": row.label,
        "commands": row.command_count,
        "input_units": row.input_units,
        "output_units": row.output_units,
        "saved_units": row.saved_units,
        "savings_pct": round(row.savings_pct, 2),
    }


def economics_record(row: MergedEconomicsRow) -> Dict[str, Any]:
    return {
        "period": row.label,
        "spend": row.spend_amount,
        "commands": row.command_count,
        "saved_units": row.saved_units,
        "savings_pct": None if row.savings_pct is None else round(row.savings_pct, 2),
        "active_cost": row.active_cost,
        "blended_rate": row.blended_rate,
        "savings_active": row.savings_active,
        "savings_blended": row.savings_blended,
    }


def totals_record(totals: EconomicsTotals) -> Dict[str, Any]:
    return {
        "spend": totals.spend_amount,
        "commands": totals.command_count,
        "saved_units": totals.saved_units,
        "savings_pct": round(totals.savings_pct, 2),
        "active_cost": totals.active_cost,
        "blended_rate": totals.blended_rate,
        "savings_active": totals.savings_active,
        "savings_blended": totals.savings_blended,
    }


def to_json(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def to_csv(records: List[Dict[str, Any]], fields: Sequence[str]) -> str:
    """CSV with a header row; missing values become empty cells."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(fields), lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow({k: ("" if record.get(k) is None else record[k]) for k in fields})
    return buffer.getvalue()


def adapter_table(registry) -> Table:
    table = Table(title="Adapters")
    table.add_column("Command")
    table.add_column("Adapter")
    table.add_column("Status")
    for entry in registry.entries():
        status = "[dim]disabled[/]" if registry.is_disabled(entry) else "[green]active[/]"
        table.add_row(entry.signature, entry.name, status)
    return table
