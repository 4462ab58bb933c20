"""Rollup state — the account registry and the state tree."""

from optimist.state.registry import AccountRegistry
from optimist.state.state_tree import StateTree

__all__ = ["AccountRegistry", "StateTree"]
