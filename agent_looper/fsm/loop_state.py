"""Loop status enumeration for the iteration controller.

This module provides LoopStatus enum for tracking whether a controller's
background loop is active.
"""

from enum import Enum


class LoopStatus(Enum):
    """Controller loop states.

    - IDLE: No background loop is running; commands may start one
    - RUNNING: A background loop is iterating; new tasks are queued

    Enum values are lowercase strings.
    """

    IDLE = "idle"
    RUNNING = "running"
