"""
Core modules for tokentrim.

This package contains unit estimation, period aggregation, the economics
merge with an external cost feed, and invocation dispatch.
"""
