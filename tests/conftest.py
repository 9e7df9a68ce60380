"""Shared pytest fixtures for agent-looper tests."""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Union

import pytest

from agent_looper.loop.contracts import AgentContext, AgentOutcome, LoopEvent, ProgressEvent
from agent_looper.loop.controller import LoopController
from agent_looper.loop.executor import CallableAgent, EventSink, ExecutionHandle
from agent_looper.loop.judge import JudgeAdapter
from agent_looper.loop.single_pass import SinglePassExecutor


Reply = Union[str, AgentOutcome]


class ScriptedAgent:
    """In-process sub-agent returning canned replies.

    Replies are used in order; the last one repeats once the script runs out.
    When ``gate`` is set, every call blocks until the event is set.
    """

    def __init__(
        self,
        name: str,
        replies: Optional[Sequence[Reply]] = None,
        *,
        fail_with: Optional[str] = None,
        events: Optional[List[ProgressEvent]] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.name = name
        self.replies: List[Reply] = list(replies or [f"{name} output"])
        self.fail_with = fail_with
        self.events = list(events or [])
        self.gate = gate
        self.prompts: List[str] = []
        self._agent = CallableAgent(name, self._respond)

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def start(self, prompt: str, context: AgentContext, sink: EventSink) -> ExecutionHandle:
        return self._agent.start(prompt, context, sink)

    async def _respond(self, prompt: str, context: AgentContext, sink: EventSink) -> Reply:
        self.prompts.append(prompt)
        for event in self.events:
            sink(event)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise RuntimeError(self.fail_with)
        return self.replies[min(self.calls - 1, len(self.replies) - 1)]


def continue_reply(reason: str = "keep going", next_task: Optional[str] = None) -> str:
    payload: dict[str, Any] = {"type": "continue", "reason": reason}
    if next_task is not None:
        payload["nextTask"] = next_task
    return f"Looks like more work is needed.\n```json\n{json.dumps(payload)}\n```"


def terminate_reply(reason: str = "done", result: Any = None) -> str:
    payload: dict[str, Any] = {"type": "terminate", "reason": reason}
    if result is not None:
        payload["result"] = result
    return f"```json\n{json.dumps(payload)}\n```"


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@dataclass
class LoopHarness:
    """A controller wired to scripted producer, critic and judge agents."""

    controller: LoopController
    single_pass: SinglePassExecutor
    producer: ScriptedAgent
    critic: ScriptedAgent
    judge: ScriptedAgent
    events: List[LoopEvent] = field(default_factory=list)

    def progress(self) -> List[str]:
        return [str(e.payload) for e in self.events if e.kind == "progress"]

    def results(self) -> List[Any]:
        return [e.payload for e in self.events if e.kind == "result"]


@pytest.fixture
def scripted_agent() -> Callable[..., ScriptedAgent]:
    """Factory fixture for ScriptedAgent.

    Usage:
        def test_example(scripted_agent):
            producer = scripted_agent("producer", ["draft"])
    """
    return ScriptedAgent


@pytest.fixture
def judge_replies():
    """Helpers producing fenced judge payloads: (continue_reply, terminate_reply)."""
    return continue_reply, terminate_reply


@pytest.fixture
def until():
    """Async polling helper: ``await until(lambda: cond)``."""
    return wait_until


@pytest.fixture
def loop_harness() -> Callable[..., LoopHarness]:
    """Factory fixture building a LoopController around scripted agents.

    Usage:
        def test_example(loop_harness):
            h = loop_harness(max_iterations=3, judge=[terminate_reply()])
            h.controller.submit("start build it")
    """

    def _create(
        max_iterations: int = 3,
        producer: Optional[Sequence[Reply]] = None,
        critic: Optional[Sequence[Reply]] = None,
        judge: Optional[Sequence[Reply]] = None,
        producer_gate: Optional[asyncio.Event] = None,
        producer_fails: Optional[str] = None,
        judge_fails: Optional[str] = None,
        **controller_kwargs: Any,
    ) -> LoopHarness:
        producer_agent = ScriptedAgent(
            "producer", producer, gate=producer_gate, fail_with=producer_fails
        )
        critic_agent = ScriptedAgent("critic", critic)
        judge_agent = ScriptedAgent(
            "judge", judge or [terminate_reply()], fail_with=judge_fails
        )
        single_pass = SinglePassExecutor([producer_agent, critic_agent])
        events: List[LoopEvent] = []
        controller = LoopController(
            single_pass,
            JudgeAdapter(judge_agent),
            max_iterations=max_iterations,
            sink=events.append,
            **controller_kwargs,
        )
        return LoopHarness(
            controller=controller,
            single_pass=single_pass,
            producer=producer_agent,
            critic=critic_agent,
            judge=judge_agent,
            events=events,
        )

    return _create
