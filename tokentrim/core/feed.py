"""
External cost feed collaborator.

The feed supplies already-fetched spend data per period. Fetching it over
the network is someone else's job; this module only parses the export and
maps a missing or broken feed to "unavailable".
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from .economics import EconomicsRecord
from .periods import DAY, MONTH, WEEK, Granularity, PeriodKey, parse_period_label

logger = logging.getLogger(__name__)


class FeedUnavailable(Exception):
    """Raised when the cost feed cannot supply data."""


class CostFeed:
    """Source of EconomicsRecords for a granularity and optional date range."""

    def fetch(
        self,
        granularity: Granularity,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[EconomicsRecord]:
        raise NotImplementedError


# ccusage export section and period field per granularity
_CCUSAGE_SECTIONS = {
    DAY.name: ("daily", "date"),
    WEEK.name: ("weekly", "week"),
    MONTH.name: ("monthly", "month"),
}


class CcusageJsonFeed(CostFeed):
    """Feed backed by a ccusage-style JSON export on disk.

    Expected shape::

        {"daily": [{"date": "2026-01-28", "totalCost": 12.5,
                    "inputTokens": 1000, "outputTokens": 500,
                    "totalTokens": 90000}, ...],
         "weekly": [{"week": "2026-01-26", ...}],
         "monthly": [{"month": "2026-01", ...}]}
    """

    def __init__(self, path):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise FeedUnavailable(f"Cost feed file not found: {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            raise FeedUnavailable(f"Cost feed file {self.path} is unreadable: {e}")
        if not isinstance(data, dict):
            raise FeedUnavailable(f"Cost feed file {self.path} must contain a JSON object")
        return data

    def fetch(
        self,
        granularity: Granularity,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[EconomicsRecord]:
        """Parse the export section for a granularity.

        Raises:
            FeedUnavailable: If the file is missing, malformed or has no
                section for the granularity
        """
        if granularity.name not in _CCUSAGE_SECTIONS:
            raise FeedUnavailable(f"Cost feed has no data for granularity '{granularity.name}'")
        section, period_field = _CCUSAGE_SECTIONS[granularity.name]

        entries = self._load().get(section)
        if not isinstance(entries, list):
            raise FeedUnavailable(f"Cost feed has no '{section}' section")

        records = []
        for entry in entries:
            record = _parse_entry(entry, period_field, granularity)
            if record is None:
                continue
            if start is not None and record.period_key.start < start:
                continue
            if end is not None and record.period_key.start > end:
                continue
            records.append(record)
        return records


def _parse_entry(entry: Any, period_field: str, granularity: Granularity) -> Optional[EconomicsRecord]:
    """Convert one export entry; malformed entries are skipped with a warning."""
    try:
        key = parse_period_label(str(entry[period_field]), granularity)
        input_tokens = int(entry.get("inputTokens", 0))
        output_tokens = int(entry.get("outputTokens", 0))
        total_tokens = int(entry.get("totalTokens", input_tokens + output_tokens))
        return EconomicsRecord.from_usage(
            period_key=key,
            spend_amount=float(entry["totalCost"]),
            total_tokens=total_tokens,
            active_tokens=input_tokens + output_tokens,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Skipping malformed cost feed entry %r: %s", entry, e)
        return None


def load_feed(
    feed: Optional[CostFeed],
    granularity: Granularity,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Optional[Dict[PeriodKey, EconomicsRecord]]:
    """Fetch feed records keyed by period, or None when the feed is unavailable.

    Duplicate keys keep the last record the feed reported.
    """
    if feed is None:
        return None
    try:
        records = feed.fetch(granularity, start, end)
    except FeedUnavailable as e:
        logger.warning("Cost feed unavailable: %s", e)
        return None
    return {record.period_key: record for record in records}
