"""Pattern detection layer - seed swap and custody handoff tracking."""

from handoff_trader.detector.models import (
    ActionKind,
    CyclePhase,
    CycleState,
    PatternAction,
    PendingBuy,
    Role,
    WatchedAddressSet,
)
from handoff_trader.detector.pattern import PatternStateMachine

__all__ = [
    "ActionKind",
    "CyclePhase",
    "CycleState",
    "PatternAction",
    "PatternStateMachine",
    "PendingBuy",
    "Role",
    "WatchedAddressSet",
]
