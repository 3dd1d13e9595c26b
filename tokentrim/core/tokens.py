"""
Token estimation for raw and compacted output.

Units are an approximation of LLM tokens: one unit per four characters,
rounded up, so any non-empty text costs at least one unit.
"""

from dataclasses import dataclass
from typing import Iterable

CHARS_PER_UNIT = 4


def estimate_units(text: str) -> int:
    """Estimate the number of units in a piece of text.

    Args:
        text: Text to measure

    Returns:
        ceil(len(text) / 4), or 0 for empty text
    """
    if not text:
        return 0
    return (len(text) + CHARS_PER_UNIT - 1) // CHARS_PER_UNIT


def estimate_lines_units(lines: Iterable[str]) -> int:
    """Estimate units for lines as they would be printed (newline-joined)."""
    return estimate_units("\n".join(lines))


@dataclass
class UnitCounter:
    """Running character count for text consumed incrementally.

    The unit estimate is derived from the total character count rather than
    summed per chunk, so splitting the same text into different chunks never
    changes the result.
    """
    chars: int = 0

    def add(self, text: str) -> None:
        self.chars += len(text)

    @property
    def units(self) -> int:
        return (self.chars + CHARS_PER_UNIT - 1) // CHARS_PER_UNIT
