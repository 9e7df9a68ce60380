"""Snapshot model for read-only views of controller loop state.

This module provides LoopSnapshot, an immutable copy of the loop state
taken under the state machine lock for status reports and tests.
"""

from typing import List, Optional
import pydantic as pd

from agent_looper.fsm.loop_state import LoopStatus


class LoopSnapshot(pd.BaseModel):
    """Point-in-time copy of a controller's loop state.

    Attributes:
        status: IDLE or RUNNING
        sub_status: Advisory marker of the current sub-phase, if any
        current_task: Task description being worked on
        iteration: Number of passes started in the current run
        max_iterations: Upper bound on passes per run
        should_stop: Whether a cooperative stop has been requested
        pending: Queued task descriptions in FIFO order
    """

    status: LoopStatus
    sub_status: Optional[str] = None
    current_task: str = ""
    iteration: int = 0
    max_iterations: int
    should_stop: bool = False
    pending: List[str] = pd.Field(default_factory=list)

    model_config = pd.ConfigDict(frozen=True, extra="forbid")

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def render(self) -> str:
        """Format the snapshot as the multi-line status report."""
        lines = [
            "[Looper status]",
            f"Status: {self.status.name}",
            f"Current task: {self.current_task or '(none)'}",
            f"Iteration: {self.iteration}/{self.max_iterations}",
            f"Sub-status: {self.sub_status or 'N/A'}",
            f"Pending queue: {self.pending_count} task(s)",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LoopSnapshot(status={self.status.value!r}, iteration={self.iteration}, "
            f"max_iterations={self.max_iterations}, pending={self.pending_count})"
        )
