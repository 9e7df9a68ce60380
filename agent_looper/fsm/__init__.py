"""Finite state machine package for agent-looper.

This package provides the loop state owner used by the iteration controller.
"""

from agent_looper.fsm.loop_fsm import InvalidTransitionError, LoopStateMachine
from agent_looper.fsm.loop_state import LoopStatus
from agent_looper.fsm.pending_queue import PendingQueue
from agent_looper.fsm.snapshot import LoopSnapshot

__all__ = [
    "InvalidTransitionError",
    "LoopStateMachine",
    "LoopStatus",
    "LoopSnapshot",
    "PendingQueue",
]
