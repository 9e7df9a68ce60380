"""Judge adapter: turns an iteration outcome into a continuation decision.

The judge sub-agent answers with a JSON object, either fenced in a
```json block or embedded in prose:

    {"type": "continue", "nextTask": "...", "reason": "..."}
    {"type": "terminate", "reason": "...", "result": {...}}

Anything that cannot be read as one of those shapes yields a terminate
decision describing the failure.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import pydantic as pd

from agent_looper.fsm.pending_queue import PendingQueue
from agent_looper.loop.contracts import AgentContext, JudgeDecision, JudgeWireFormat, PassResult
from agent_looper.loop.executor import AgentExecutor, ExecutionHandle, run_agent

logger = logging.getLogger(__name__)

NONE_MARKER = "(none)"
FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


class JudgeParseError(ValueError):
    """Raised when judge output holds no valid decision payload."""


def render_pending(items: List[str]) -> str:
    """Render drained pending tasks as a numbered list, or the none marker."""
    if not items:
        return NONE_MARKER
    return "\n".join(f"{idx}. {item}" for idx, item in enumerate(items, 1))


def build_judge_request(task: str, iteration: int, result: str, pending: List[str]) -> str:
    """Build the decision request handed to the judge sub-agent.

    Args:
        task: Current task description.
        iteration: 1-based index of the pass that just finished.
        result: Rendered pass result, including failure status.
        pending: Tasks drained from the pending queue, in FIFO order.

    Returns:
        Request text.
    """
    return (
        f"Current Task: {task}\n"
        f"Iteration: {iteration}\n"
        "\n"
        "Iteration Result:\n"
        f"{result}\n"
        "\n"
        f"Pending Messages ({len(pending)}):\n"
        f"{render_pending(pending)}"
    )


def _json_objects(text: str) -> Iterator[Any]:
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        yield obj
        idx = text.find("{", end)


def extract_decision_payload(raw_output: str) -> Dict[str, Any]:
    """Find the first JSON object with a ``type`` field in judge output.

    Fenced blocks are searched first, then the whole text.

    Raises:
        JudgeParseError: If no such object exists.
    """
    if not raw_output.strip():
        raise JudgeParseError("judge returned no output")

    sources = [m.group(1) for m in FENCED_BLOCK.finditer(raw_output)]
    sources.append(raw_output)

    for source in sources:
        for obj in _json_objects(source):
            if isinstance(obj, dict) and "type" in obj:
                return obj

    raise JudgeParseError("no JSON object with a 'type' field found")


def parse_judge_output(raw_output: str) -> JudgeDecision:
    """Parse judge output into a decision, falling back to terminate.

    Args:
        raw_output: Full text produced by the judge sub-agent.

    Returns:
        JudgeDecision; ``fallback`` is True when the output could not be parsed.
    """
    try:
        payload = extract_decision_payload(raw_output)
        wire = JudgeWireFormat.model_validate(payload)
    except JudgeParseError as e:
        logger.warning(f"Failed to parse judge decision: {e}")
        return JudgeDecision.terminate_on_failure(f"Failed to parse judge decision: {e}")
    except pd.ValidationError as e:
        logger.warning(f"Judge decision failed validation: {e}")
        return JudgeDecision.terminate_on_failure(
            f"Failed to parse judge decision: invalid payload ({e.error_count()} error(s))"
        )

    return JudgeDecision.from_payload(wire.root)


def _log_discarded(pending: List[str]) -> None:
    if pending:
        logger.warning(f"Discarding {len(pending)} pending item(s) after judge failure")


class JudgeAdapter:
    """Consults the judge sub-agent once per iteration.

    This is the only place the pending queue is drained. Items drained for a
    judge call that then fails are discarded along with that decision.
    """

    def __init__(self, judge: AgentExecutor, context: Optional[AgentContext] = None):
        self._judge = judge
        self._context = context or AgentContext()

    @property
    def judge_name(self) -> str:
        return self._judge.name

    async def decide(
        self,
        task: str,
        iteration: int,
        result: Union[PassResult, str],
        pending_queue: PendingQueue,
        on_handle: Optional[Callable[[Optional[ExecutionHandle]], None]] = None,
    ) -> JudgeDecision:
        """Drain the queue, ask the judge, and parse its decision.

        Args:
            task: Current task description.
            iteration: Index of the pass that just finished.
            result: The pass result (or its rendered text).
            pending_queue: Queue to drain for this decision.
            on_handle: Receives the judge's handle when it starts, and None after it ends.

        Returns:
            JudgeDecision. Never raises for judge-side failures.
        """
        pending = pending_queue.drain()
        result_text = result.render() if isinstance(result, PassResult) else result
        request = build_judge_request(task, iteration, result_text, pending)
        logger.debug(f"Judge request for iteration {iteration} ({len(pending)} pending)")

        try:
            outcome = await run_agent(self._judge, request, self._context, on_start=on_handle)
        finally:
            if on_handle is not None:
                on_handle(None)

        if not outcome.success:
            reason = f"Judge invocation failed: {outcome.error or 'unknown error'}"
            logger.error(reason)
            _log_discarded(pending)
            return JudgeDecision.terminate_on_failure(reason)

        decision = parse_judge_output(outcome.output)
        if decision.fallback:
            _log_discarded(pending)
        logger.info(
            f"Judge decision for iteration {iteration}: "
            f"{'continue' if decision.should_continue else 'terminate'} ({decision.reason})"
        )
        return decision
