"""Observer hooks for loop lifecycle events.

A LoopCallback is a set of optional handlers, one per hook. The
CallbackRegistry invokes the handlers that are present, in registration
order, at fixed points of the loop. A handler that raises is logged and
skipped; observers never affect the loop itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Callable, List, Optional

from agent_looper.loop.contracts import AgentOutcome, LoopOutcome, PassResult, ProgressEvent

logger = logging.getLogger(__name__)


@dataclass
class LoopCallback:
    """Handlers for loop lifecycle hooks. Unset hooks are not called."""

    name: str = "callback"
    on_loop_start: Optional[Callable[[str], None]] = None
    on_iteration_start: Optional[Callable[[int, str], None]] = None
    on_iteration_end: Optional[Callable[[int, PassResult], None]] = None
    on_agent_start: Optional[Callable[[str], None]] = None
    on_agent_end: Optional[Callable[[str, AgentOutcome], None]] = None
    on_agent_failed: Optional[Callable[[str, str], None]] = None
    on_tool_use: Optional[Callable[[str, ProgressEvent], None]] = None
    on_tool_result: Optional[Callable[[str, ProgressEvent], None]] = None
    on_text: Optional[Callable[[str, str], None]] = None
    on_loop_end: Optional[Callable[[LoopOutcome], None]] = None


HOOK_NAMES = frozenset(f.name for f in fields(LoopCallback) if f.name.startswith("on_"))


class CallbackRegistry:
    """Ordered collection of LoopCallbacks."""

    def __init__(self, callbacks: Optional[List[LoopCallback]] = None) -> None:
        self._callbacks: List[LoopCallback] = list(callbacks or [])

    def add(self, callback: LoopCallback) -> None:
        self._callbacks.append(callback)

    def remove(self, callback: LoopCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def __len__(self) -> int:
        return len(self._callbacks)

    def notify(self, hook: str, *args: Any) -> None:
        """Invoke ``hook`` on every callback that defines it.

        Args:
            hook: Hook name, e.g. ``"on_iteration_start"``.
            *args: Positional arguments for the handler.

        Raises:
            ValueError: If ``hook`` is not a known hook name.
        """
        if hook not in HOOK_NAMES:
            raise ValueError(f"Unknown hook '{hook}'. Known hooks: {sorted(HOOK_NAMES)}")

        for callback in list(self._callbacks):
            handler = getattr(callback, hook)
            if handler is None:
                continue
            try:
                handler(*args)
            except Exception as e:
                logger.warning(f"Callback '{callback.name}' failed in {hook}: {e}")

    def forward_event(self, agent: str, event: ProgressEvent) -> None:
        """Dispatch a raw agent event to the matching hook."""
        if event.kind == "tool_use":
            self.notify("on_tool_use", agent, event)
        elif event.kind == "tool_result":
            self.notify("on_tool_result", agent, event)
        else:
            self.notify("on_text", agent, event.content)
