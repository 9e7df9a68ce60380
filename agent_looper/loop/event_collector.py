"""Accumulator for raw sub-agent events awaiting summarization."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List

from agent_looper.loop.contracts import ProgressEvent

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS = 200
MAX_CONTENT_CHARS = 200
CONTENT_EDGE_LINES = 3
MAX_DIFF_LINES = 20
MAX_PASSTHROUGH_CHARS = 100
KEPT_INPUT_FIELDS = ("file_path", "command", "description")


def truncate_text(text: str, max_length: int = MAX_TEXT_CHARS) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def truncate_content(content: str) -> str:
    """Keep the first and last lines of long file content."""
    if len(content) <= MAX_CONTENT_CHARS:
        return content

    lines = content.split("\n")
    if len(lines) <= CONTENT_EDGE_LINES * 2:
        return content

    head = "\n".join(lines[:CONTENT_EDGE_LINES])
    tail = "\n".join(lines[-CONTENT_EDGE_LINES:])
    return f"{head}\n...\n{tail}"


def truncate_diff(diff: str) -> str:
    lines = diff.split("\n")
    if len(lines) <= MAX_DIFF_LINES:
        return diff
    return "\n".join(lines[:MAX_DIFF_LINES]) + "\n... (truncated)"


def truncate_tool_input(tool_input: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a tool input to the fields useful for a progress summary."""
    result: Dict[str, Any] = {}

    for key in KEPT_INPUT_FIELDS:
        if tool_input.get(key):
            result[key] = tool_input[key]

    content = tool_input.get("content")
    if isinstance(content, str) and content:
        result["content"] = truncate_content(content)

    diff = tool_input.get("diff")
    if isinstance(diff, str) and diff:
        result["diff"] = truncate_diff(diff)

    for key, value in tool_input.items():
        if key in result:
            continue
        if isinstance(value, str) and len(value) < MAX_PASSTHROUGH_CHARS:
            result[key] = value

    return result


def truncate_event(event: ProgressEvent) -> ProgressEvent:
    """Return a copy of ``event`` with oversized fields trimmed."""
    if event.kind == "text":
        detail = {"content": truncate_text(event.content)}
    elif event.kind == "tool_use":
        tool_input = event.detail.get("input", {})
        if not isinstance(tool_input, dict):
            tool_input = {}
        detail = {"input": truncate_tool_input(tool_input)}
    else:
        content = event.detail.get("content", "")
        detail = {"content": truncate_text(content if isinstance(content, str) else str(content))}

    return event.model_copy(update={"detail": detail})


class EventCollector:
    """Thread-safe buffer of truncated events.

    Events are appended as they stream in and handed out in one batch by
    ``flush()``, which clears the buffer. Nothing is retained after a flush.
    """

    def __init__(self, max_events: int = 10) -> None:
        if max_events < 1:
            raise ValueError(f"max_events must be at least 1, got {max_events}")
        self._max_events = max_events
        self._buffer: List[ProgressEvent] = []
        self._lock = threading.Lock()

    @property
    def max_events(self) -> int:
        return self._max_events

    def add(self, event: ProgressEvent) -> int:
        """Buffer a truncated copy of ``event`` and return the buffer size."""
        truncated = truncate_event(event)
        with self._lock:
            self._buffer.append(truncated)
            count = len(self._buffer)
        logger.debug(f"Buffered {event.kind} event, count={count}")
        return count

    def should_summarize(self) -> bool:
        with self._lock:
            return len(self._buffer) >= self._max_events

    def has_events(self) -> bool:
        with self._lock:
            return bool(self._buffer)

    def count(self) -> int:
        with self._lock:
            return len(self._buffer)

    def flush(self) -> List[ProgressEvent]:
        """Return all buffered events and clear the buffer."""
        with self._lock:
            events = self._buffer
            self._buffer = []
        if events:
            logger.debug(f"Flushed {len(events)} events")
        return events
