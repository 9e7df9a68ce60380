"""Agent executor contract and helpers for invoking sub-agents.

A sub-agent is anything with a ``name`` and a ``start(prompt, context, sink)``
method returning an ExecutionHandle. The sink receives ProgressEvents while the
agent runs; the handle's ``completion`` resolves to an AgentOutcome and its
``cancel()`` aborts the invocation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from agent_looper.loop.contracts import AgentContext, AgentOutcome, ProgressEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[ProgressEvent], None]
AgentFunction = Callable[[str, AgentContext, EventSink], Awaitable[Union[str, AgentOutcome]]]


class ExecutionHandle:
    """Handle for one in-flight sub-agent invocation."""

    def __init__(
        self,
        completion: "asyncio.Future[AgentOutcome]",
        canceller: Optional[Callable[[], None]] = None,
    ) -> None:
        self._completion = completion
        self._canceller = canceller
        self._cancel_requested = False

    @property
    def completion(self) -> "asyncio.Future[AgentOutcome]":
        return self._completion

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def done(self) -> bool:
        return self._completion.done()

    def cancel(self) -> None:
        """Abort the invocation. Safe to call more than once."""
        if self._cancel_requested or self._completion.done():
            return
        self._cancel_requested = True
        if self._canceller is not None:
            self._canceller()
        else:
            self._completion.cancel()


@runtime_checkable
class AgentExecutor(Protocol):
    """Contract every sub-agent (producer, critic, judge, summarizer) implements."""

    name: str

    def start(self, prompt: str, context: AgentContext, sink: EventSink) -> ExecutionHandle:
        ...


class CallableAgent:
    """In-process agent backed by an async function.

    The function receives the prompt, the context and the event sink, and
    returns either the output text or a full AgentOutcome. Raised exceptions
    become failed outcomes.

    Example:
        >>> async def echo(prompt, context, sink):
        ...     sink(ProgressEvent.text(prompt))
        ...     return prompt
        >>> agent = CallableAgent("echo", echo)
    """

    def __init__(self, name: str, fn: AgentFunction) -> None:
        self.name = name
        self._fn = fn

    def start(self, prompt: str, context: AgentContext, sink: EventSink) -> ExecutionHandle:
        task = asyncio.get_running_loop().create_task(self._run(prompt, context, sink))
        return ExecutionHandle(task)

    async def _run(self, prompt: str, context: AgentContext, sink: EventSink) -> AgentOutcome:
        try:
            value = await self._fn(prompt, context, sink)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{self.name}] Agent raised: {e}")
            return AgentOutcome(success=False, error=f"{type(e).__name__}: {e}")

        if isinstance(value, AgentOutcome):
            return value
        return AgentOutcome(success=True, output=value or "")

    def __repr__(self) -> str:
        return f"CallableAgent(name={self.name!r})"


async def run_agent(
    executor: AgentExecutor,
    prompt: str,
    context: AgentContext,
    on_event: Optional[EventSink] = None,
    on_start: Optional[Callable[[ExecutionHandle], None]] = None,
) -> AgentOutcome:
    """Run one sub-agent to completion and return its outcome.

    Text events are collected so agents that only stream text still produce
    an output. Every failure mode (start error, raised completion, hard
    cancel) is converted to a failed AgentOutcome.

    Args:
        executor: Agent to invoke.
        prompt: Input text.
        context: Execution context.
        on_event: Receives every ProgressEvent as it is streamed.
        on_start: Receives the handle once the agent has started.

    Returns:
        AgentOutcome of the invocation.
    """
    chunks: list[str] = []

    def sink(event: ProgressEvent) -> None:
        if event.kind == "text":
            chunks.append(event.content)
        if on_event is not None:
            on_event(event)

    try:
        handle = executor.start(prompt, context, sink)
    except Exception as e:
        logger.error(f"[{executor.name}] Failed to start agent: {e}")
        return AgentOutcome(success=False, error=f"failed to start: {e}")

    if on_start is not None:
        on_start(handle)

    try:
        outcome = await handle.completion
    except asyncio.CancelledError:
        if handle.cancel_requested:
            logger.info(f"[{executor.name}] Agent invocation cancelled")
            return AgentOutcome(success=False, output="".join(chunks), error="cancelled")
        raise
    except Exception as e:
        logger.error(f"[{executor.name}] Agent execution failed: {e}")
        return AgentOutcome(success=False, output="".join(chunks), error=str(e))

    if not outcome.output and chunks:
        outcome = outcome.model_copy(update={"output": "".join(chunks)})
    return outcome
