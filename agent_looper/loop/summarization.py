"""Progress summarization driven by a periodic timer and an event-count threshold.

Raw tool and text events from sub-agents are buffered by an EventCollector.
A summary is produced when the buffer reaches the threshold, when the timer
fires with events buffered, or when an agent finishes. Summaries come from a
dedicated summarizer sub-agent and are reported through ``on_summary``; they
never touch loop state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Set

from agent_looper.loop.callbacks import LoopCallback
from agent_looper.loop.contracts import AgentContext, AgentOutcome, ProgressEvent
from agent_looper.loop.event_collector import EventCollector
from agent_looper.loop.executor import AgentExecutor, run_agent

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_EVENT_THRESHOLD = 10
IDLE_PROMPT = "Agent is processing...\n\n"


def format_tool_call(event: ProgressEvent) -> str:
    tool_input = event.detail.get("input", {})
    if not isinstance(tool_input, dict):
        tool_input = {}

    line = f"- {event.name or 'tool'}"
    if tool_input.get("file_path"):
        line += f" {tool_input['file_path']}"
    if tool_input.get("command"):
        line += f": {tool_input['command']}"
    if tool_input.get("content"):
        line += " (content truncated)"
    return line


def build_summary_prompt(events: List[ProgressEvent]) -> str:
    """Render buffered events as the summarizer's input."""
    tools = [format_tool_call(e) for e in events if e.kind == "tool_use"]
    texts = [f'- "{e.content}"' for e in events if e.kind == "text" and e.content.strip()]

    prompt = ""
    if tools:
        prompt += "Tools:\n" + "\n".join(tools) + "\n\n"
    if texts:
        prompt += "Text:\n" + "\n".join(texts) + "\n\n"
    return prompt or IDLE_PROMPT


class SummarizationObserver:
    """Turns streams of raw agent events into short progress lines.

    Two triggers feed the same accumulator:
        - Timer: every ``interval_seconds`` while started, flush if non-empty
        - Threshold: flush as soon as ``event_threshold`` events are buffered

    Both flush under one asyncio.Lock, so a batch of events is summarized once.
    """

    def __init__(
        self,
        summarizer: AgentExecutor,
        on_summary: Optional[Callable[[str], None]] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        event_threshold: int = DEFAULT_EVENT_THRESHOLD,
        context: Optional[AgentContext] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self._summarizer = summarizer
        self._on_summary = on_summary
        self._interval = interval_seconds
        self._context = context or AgentContext(source="summarizer")
        self._collector = EventCollector(max_events=event_threshold)
        self._lock = asyncio.Lock()
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._summary_tasks: Set[asyncio.Task[Optional[str]]] = set()
        self._threshold_flush_pending = False
        self._current_agent = "loop"

    @property
    def collector(self) -> EventCollector:
        return self._collector

    @property
    def on_summary(self) -> Optional[Callable[[str], None]]:
        return self._on_summary

    @on_summary.setter
    def on_summary(self, handler: Optional[Callable[[str], None]]) -> None:
        self._on_summary = handler

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def as_callback(self) -> LoopCallback:
        """Hooks wiring this observer into a CallbackRegistry."""
        return LoopCallback(
            name="summarization",
            on_agent_start=self._on_agent_start,
            on_tool_use=self.record,
            on_text=self._on_text,
            on_agent_end=self._on_agent_end,
            on_agent_failed=self._on_agent_failed,
        )

    def _on_agent_start(self, agent: str) -> None:
        self._current_agent = agent

    def _on_text(self, agent: str, chunk: str) -> None:
        self.record(agent, ProgressEvent.text(chunk, name=agent))

    def _on_agent_end(self, agent: str, _outcome: AgentOutcome) -> None:
        if self._collector.has_events():
            self._schedule(agent)

    def _on_agent_failed(self, agent: str, _error: str) -> None:
        if self._collector.has_events():
            self._schedule(agent)

    def record(self, agent: str, event: ProgressEvent) -> None:
        """Buffer one raw event; flush immediately once the threshold is reached."""
        self._current_agent = agent
        count = self._collector.add(event)
        if count >= self._collector.max_events and not self._threshold_flush_pending:
            self._threshold_flush_pending = True
            self._schedule(agent)

    def _schedule(self, label: str) -> None:
        task = asyncio.get_running_loop().create_task(self.summarize_now(label))
        self._summary_tasks.add(task)
        task.add_done_callback(self._summary_tasks.discard)

    async def summarize_now(self, label: Optional[str] = None) -> Optional[str]:
        """Flush buffered events and report a summary of them.

        Returns:
            The summary text, or None if nothing was buffered or the summarizer
            produced nothing.
        """
        async with self._lock:
            self._threshold_flush_pending = False
            events = self._collector.flush()
            if not events:
                return None

            logger.info(f"Generating summary for {len(events)} events")
            summary = await self._call_summarizer(build_summary_prompt(events))

        if not summary:
            return None

        message = f"[{label or self._current_agent}] {summary}"
        if self._on_summary is not None:
            self._on_summary(message)
        else:
            logger.info(message)
        return summary

    async def _call_summarizer(self, prompt: str) -> str:
        outcome = await run_agent(self._summarizer, prompt, self._context)
        if not outcome.success:
            logger.warning(f"Summarizer execution failed: {outcome.error}")
            return ""
        return outcome.output.strip()

    def start_timer(self) -> None:
        """Start the periodic timer if it is not already running."""
        if self.timer_running:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._tick())

    def stop_timer(self) -> None:
        """Cancel the periodic timer. Safe to call when it is not running."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not self._collector.has_events():
                continue
            try:
                await self.summarize_now(self._current_agent)
            except Exception as e:
                logger.warning(f"Timer summary failed: {e}")

    def abort(self) -> None:
        """Cancel the timer and any in-flight summaries, dropping buffered events."""
        self.stop_timer()
        for task in list(self._summary_tasks):
            task.cancel()
        self._summary_tasks.clear()
        self._threshold_flush_pending = False
        dropped = self._collector.flush()
        if dropped:
            logger.debug(f"Dropped {len(dropped)} unsummarized events")

    async def aclose(self, final_summary: bool = True) -> None:
        """Stop the timer, wait for in-flight summaries and flush what is left."""
        self.stop_timer()

        if self._summary_tasks:
            await asyncio.gather(*list(self._summary_tasks), return_exceptions=True)

        if final_summary and self._collector.has_events():
            await self.summarize_now(self._current_agent)
        else:
            self._collector.flush()
