"""LoopStateMachine: state owner for the iterative agent loop.

This module provides LoopStateMachine, which owns the mutable loop state of a
single controller (status, task, iteration counter, stop flag and pending
queue) and validates IDLE/RUNNING transitions against a transition map.
"""

import threading
from typing import Dict, Optional

from agent_looper.fsm.loop_state import LoopStatus
from agent_looper.fsm.pending_queue import PendingQueue
from agent_looper.fsm.snapshot import LoopSnapshot


# Default transition map: a run starts from IDLE and always returns to IDLE
FSM_TRANSITIONS: Dict[LoopStatus, set[LoopStatus]] = {
    LoopStatus.IDLE: {LoopStatus.RUNNING},
    LoopStatus.RUNNING: {LoopStatus.IDLE},
}


class InvalidTransitionError(RuntimeError):
    """Raised when a status change is not allowed by the transition map."""

    def __init__(self, from_state: LoopStatus, to_state: LoopStatus, valid: set[LoopStatus]):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition: {from_state.value} -> {to_state.value}. "
            f"Valid transitions from {from_state.value}: {sorted(s.value for s in valid)}"
        )


class LoopStateMachine:
    """State owner for one controller's iteration loop.

    Holds the single mutable loop record and serializes every mutation.

    Locking Strategy:
        - Uses threading.RLock for reentrant-safe state mutation protection
        - All state mutations (transitions, counters, flags, task) hold _state_lock
        - Read operations (property getters) do NOT acquire locks
        - The pending queue carries its own lock so commands can append while
          the loop is suspended inside a sub-agent call
        - Each LoopStateMachine instance has its own lock instance

    Attributes:
        status: The current LoopStatus.
        sub_status: Advisory marker of the current sub-phase.
        current_task: Task description the loop is working on.
        iteration: Passes started in the current run.
        max_iterations: Upper bound on passes per run.
        should_stop: Cooperative-cancellation flag.
        pending_queue: FIFO of tasks submitted while running.

    Example:
        >>> fsm = LoopStateMachine(max_iterations=3)
        >>> fsm.status
        <LoopStatus.IDLE: 'idle'>
        >>> fsm.begin_run("write the parser")
        >>> fsm.status
        <LoopStatus.RUNNING: 'running'>
    """

    def __init__(self, max_iterations: int = 5):
        """Initialize the loop state machine.

        Args:
            max_iterations: Maximum passes per run (default: 5).

        Raises:
            ValueError: If max_iterations is less than 1.
        """
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")

        self._max_iterations = max_iterations
        self._status = LoopStatus.IDLE
        self._sub_status: Optional[str] = None
        self._current_task = ""
        self._iteration = 0
        self._should_stop = False
        self._pending = PendingQueue()
        self._state_lock = threading.RLock()

    @property
    def status(self) -> LoopStatus:
        """Get the current status (read-only)."""
        return self._status

    @property
    def sub_status(self) -> Optional[str]:
        """Get the advisory sub-phase marker (read-only)."""
        return self._sub_status

    @property
    def current_task(self) -> str:
        """Get the active task description (read-only)."""
        return self._current_task

    @property
    def iteration(self) -> int:
        """Get the iteration counter (read-only)."""
        return self._iteration

    @property
    def max_iterations(self) -> int:
        """Get the iteration bound (read-only)."""
        return self._max_iterations

    @property
    def should_stop(self) -> bool:
        """Get the cooperative-cancellation flag (read-only)."""
        return self._should_stop

    @property
    def pending_queue(self) -> PendingQueue:
        """Get the pending queue (read-only reference)."""
        return self._pending

    @property
    def state_lock(self) -> threading.RLock:
        """Get the state lock (read-only)."""
        return self._state_lock

    @property
    def is_running(self) -> bool:
        return self._status == LoopStatus.RUNNING

    def transition_to(self, next_status: LoopStatus) -> LoopStatus:
        """Transition to a new status.

        Args:
            next_status: The target status.

        Returns:
            The new status.

        Raises:
            InvalidTransitionError: If the transition is not in the map; state is unchanged.
        """
        with self._state_lock:
            valid = FSM_TRANSITIONS.get(self._status, set())
            if next_status not in valid:
                raise InvalidTransitionError(self._status, next_status, valid)
            self._status = next_status
            return next_status

    def begin_run(self, task: str) -> None:
        """Start a run: IDLE -> RUNNING with counters reset.

        The iteration counter is reset to 0 and the stop flag cleared
        regardless of what a previous run left behind. Pending tasks are kept.

        Args:
            task: Initial task description.

        Raises:
            InvalidTransitionError: If a run is already active.
        """
        with self._state_lock:
            self.transition_to(LoopStatus.RUNNING)
            self._current_task = task
            self._iteration = 0
            self._should_stop = False
            self._sub_status = None

    def finish_run(self) -> None:
        """End a run: RUNNING -> IDLE and clear the sub-phase marker."""
        with self._state_lock:
            self.transition_to(LoopStatus.IDLE)
            self._sub_status = None

    def request_stop(self) -> bool:
        """Set the stop flag if a run is active.

        Returns:
            True if the flag was set, False if no run is active.
        """
        with self._state_lock:
            if self._status != LoopStatus.RUNNING:
                return False
            self._should_stop = True
            return True

    def can_iterate(self) -> bool:
        """The single cancellation point checked at each iteration boundary."""
        with self._state_lock:
            return self._iteration < self._max_iterations and not self._should_stop

    def advance_iteration(self) -> int:
        """Increment the iteration counter before a pass.

        Returns:
            The new iteration number.

        Raises:
            RuntimeError: If the counter would exceed max_iterations.
        """
        with self._state_lock:
            if self._iteration >= self._max_iterations:
                raise RuntimeError(
                    f"Iteration bound reached: iteration ({self._iteration}) "
                    f"equals max_iterations ({self._max_iterations})"
                )
            self._iteration += 1
            return self._iteration

    def set_sub_status(self, sub_status: Optional[str]) -> None:
        with self._state_lock:
            self._sub_status = sub_status

    def set_current_task(self, task: str) -> None:
        with self._state_lock:
            self._current_task = task

    def enqueue(self, task: str) -> int:
        """Append a task to the pending queue and return its 1-based position."""
        return self._pending.append(task)

    def snapshot(self) -> LoopSnapshot:
        """Take a consistent copy of the loop state."""
        with self._state_lock:
            return LoopSnapshot(
                status=self._status,
                sub_status=self._sub_status,
                current_task=self._current_task,
                iteration=self._iteration,
                max_iterations=self._max_iterations,
                should_stop=self._should_stop,
                pending=self._pending.snapshot(),
            )

    def __repr__(self) -> str:
        """String representation showing current status."""
        return (
            f"LoopStateMachine(status={self._status.value}, "
            f"iteration={self._iteration}/{self._max_iterations}, "
            f"pending={len(self._pending)})"
        )
