"""Tests for the agent executor contract and run_agent helper."""

import asyncio
from unittest.mock import MagicMock

import pytest

from agent_looper.loop.contracts import AgentContext, AgentOutcome, ProgressEvent
from agent_looper.loop.executor import AgentExecutor, CallableAgent, ExecutionHandle, run_agent


class TestCallableAgent:
    """Test the in-process agent wrapper."""

    def test_satisfies_protocol(self):
        async def fn(prompt, context, sink):
            return prompt

        assert isinstance(CallableAgent("echo", fn), AgentExecutor)

    @pytest.mark.asyncio
    async def test_string_return_becomes_success(self):
        async def fn(prompt, context, sink):
            return prompt.upper()

        outcome = await run_agent(CallableAgent("echo", fn), "hi", AgentContext())

        assert outcome == AgentOutcome(success=True, output="HI")

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self):
        async def fn(prompt, context, sink):
            raise ValueError("bad prompt")

        outcome = await run_agent(CallableAgent("broken", fn), "hi", AgentContext())

        assert not outcome.success
        assert outcome.error == "ValueError: bad prompt"

    @pytest.mark.asyncio
    async def test_context_passed_through(self):
        seen = {}

        async def fn(prompt, context, sink):
            seen["context"] = context
            return "ok"

        ctx = AgentContext(workspace_path="/tmp/work")
        await run_agent(CallableAgent("ctx", fn), "hi", ctx)

        assert seen["context"].workspace_path == "/tmp/work"


class TestRunAgent:
    """Test run_agent event collection and failure conversion."""

    @pytest.mark.asyncio
    async def test_events_forwarded_and_text_collected(self):
        async def fn(prompt, context, sink):
            sink(ProgressEvent.text("a"))
            sink(ProgressEvent.tool_use("Bash", {"command": "ls"}))
            sink(ProgressEvent.text("b"))
            return AgentOutcome(success=True)

        received = []
        outcome = await run_agent(
            CallableAgent("streamer", fn), "go", AgentContext(), on_event=received.append
        )

        assert outcome.output == "ab"
        assert [e.kind for e in received] == ["text", "tool_use", "text"]

    @pytest.mark.asyncio
    async def test_start_failure(self):
        agent = MagicMock()
        agent.name = "unstartable"
        agent.start.side_effect = OSError("no such binary")

        outcome = await run_agent(agent, "go", AgentContext())

        assert not outcome.success
        assert outcome.error == "failed to start: no such binary"

    @pytest.mark.asyncio
    async def test_cancel_through_handle(self):
        started = asyncio.Event()

        async def fn(prompt, context, sink):
            sink(ProgressEvent.text("partial"))
            started.set()
            await asyncio.sleep(10)
            return "never"

        handles = []
        run = asyncio.create_task(
            run_agent(CallableAgent("slow", fn), "go", AgentContext(), on_start=handles.append)
        )
        await started.wait()
        handles[0].cancel()
        outcome = await asyncio.wait_for(run, timeout=2.0)

        assert not outcome.success
        assert outcome.error == "cancelled"
        assert outcome.output == "partial"

    @pytest.mark.asyncio
    async def test_completion_error_becomes_failure(self):
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        future.set_exception(RuntimeError("transport closed"))
        agent = MagicMock()
        agent.name = "remote"
        agent.start.return_value = ExecutionHandle(future)

        outcome = await run_agent(agent, "go", AgentContext())

        assert outcome.error == "transport closed"


class TestExecutionHandle:
    """Test handle cancellation semantics."""

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent_and_uses_canceller(self):
        future = asyncio.get_running_loop().create_future()
        canceller = MagicMock()
        handle = ExecutionHandle(future, canceller=canceller)

        handle.cancel()
        handle.cancel()

        canceller.assert_called_once()
        assert handle.cancel_requested
        assert not handle.done

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self):
        future = asyncio.get_running_loop().create_future()
        future.set_result(AgentOutcome(success=True))
        handle = ExecutionHandle(future)

        handle.cancel()

        assert not handle.cancel_requested
        assert handle.done
