"""Optimist — state transition and fraud-proof core of a BLS-signed optimistic rollup."""

__version__ = "0.1.0"
