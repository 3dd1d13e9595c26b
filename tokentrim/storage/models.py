"""
Data models for storage layer.

Defines the persisted invocation ledger entry.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class InvocationRecord:
    """Immutable record of one wrapped tool invocation.

    Append-only entries that form the accounting ledger. Failed invocations
    are recorded with their real unit counts. Once written, these records
    must never be modified.
    """
    timestamp: datetime
    tool_id: str
    raw_unit_count: int
    compacted_unit_count: int
    success: bool
    command: Optional[str] = None
    exec_time_ms: Optional[int] = None
    sequence: Optional[int] = None

    def __post_init__(self):
        """Validate unit counts are non-negative."""
        if self.raw_unit_count < 0:
            raise ValueError("raw_unit_count cannot be negative")
        if self.compacted_unit_count < 0:
            raise ValueError("compacted_unit_count cannot be negative")

    @property
    def saved_units(self) -> int:
        """Units avoided by compaction, never negative."""
        return max(self.raw_unit_count - self.compacted_unit_count, 0)
