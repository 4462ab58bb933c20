"""Transition rules and dispute replay."""

from optimist.engine.transition import BatchTally, TransitionResult
from optimist.engine.dispute import DisputeEngine, FraudReason, Verdict

__all__ = ["BatchTally", "TransitionResult", "DisputeEngine", "FraudReason", "Verdict"]
