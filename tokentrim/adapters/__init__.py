"""
Tool adapters for tokentrim.

Each adapter turns one tool's raw output into a compact summary. The
registry maps command lines to adapters and falls back to passthrough.
"""

from .base import AdapterParseFailure, CompactionResult, PassthroughAdapter, Stream
from .registry import AdapterRegistry, build_default_registry

__all__ = [
    "AdapterParseFailure",
    "AdapterRegistry",
    "CompactionResult",
    "PassthroughAdapter",
    "Stream",
    "build_default_registry",
]
