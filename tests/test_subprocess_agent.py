"""Tests for SubprocessAgent command validation and streaming execution."""

import asyncio
import json
import sys
import textwrap

import pytest

from agent_looper.loop.contracts import AgentContext
from agent_looper.loop.executor import run_agent
from agent_looper.loop.utils.executor import (
    SecurityError,
    SubprocessAgent,
    parse_output_line,
)


def write_script(tmp_path, name, body):
    script = tmp_path / name
    script.write_text(textwrap.dedent(body), encoding="utf-8")
    return script


def python_command(script) -> str:
    return f'"{sys.executable}" "{script}"'


class TestParseOutputLine:
    """Test conversion of stdout lines into progress events."""

    def test_plain_text(self):
        event = parse_output_line("compiling module", "producer")
        assert event.kind == "text"
        assert event.content == "compiling module"
        assert event.name == "producer"

    def test_tool_use_json(self):
        line = json.dumps({"type": "tool_use", "name": "Edit", "input": {"file_path": "a.py"}})

        event = parse_output_line(line)

        assert event.kind == "tool_use"
        assert event.name == "Edit"
        assert event.detail == {"input": {"file_path": "a.py"}}

    def test_tool_result_json(self):
        event = parse_output_line('{"type": "tool_result", "name": "Bash", "content": "ok"}')
        assert event.kind == "tool_result"
        assert event.content == "ok"

    def test_text_json(self):
        event = parse_output_line('{"type": "text", "text": "hello"}', "critic")
        assert event.kind == "text"
        assert event.content == "hello"

    def test_other_json_is_text(self):
        line = '{"answer": 42}'
        assert parse_output_line(line).content == line


class TestCommandValidation:
    """Test security guardrails on the configured command line."""

    @pytest.mark.parametrize(
        "command",
        ["agent | tee log", "agent; rm -rf /", "agent && other", "agent > out", "agent $(whoami)"],
    )
    def test_blocked_characters(self, command, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", command, repo_root=tmp_path)

    def test_quoted_characters_allowed(self, tmp_path):
        agent = SubprocessAgent("producer", "agent --sep ';'", repo_root=tmp_path)
        assert agent.validate_command("agent --sep '|'")

    def test_empty_command(self, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", "   ", repo_root=tmp_path)

    def test_unbalanced_quotes(self, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", "agent 'open", repo_root=tmp_path)

    def test_whitelist(self, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", "curl http://x", repo_root=tmp_path, allowed_tools=["agent"])

        agent = SubprocessAgent("producer", "agent run", repo_root=tmp_path, allowed_tools=["agent"])
        assert not agent.validate_command("curl http://x")

    def test_absolute_cwd_rejected(self, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", "agent", repo_root=tmp_path, cwd="/etc")

    def test_escaping_cwd_rejected(self, tmp_path):
        with pytest.raises(SecurityError):
            SubprocessAgent("producer", "agent", repo_root=tmp_path, cwd="../..")


class TestExecution:
    """Test running real subprocesses."""

    @pytest.mark.asyncio
    async def test_prompt_on_stdin_and_output_collected(self, tmp_path):
        script = write_script(
            tmp_path,
            "upper.py",
            """
            import sys
            print(sys.stdin.read().upper())
            """,
        )
        agent = SubprocessAgent("producer", python_command(script), repo_root=tmp_path)

        outcome = await run_agent(agent, "make it loud", AgentContext())

        assert outcome.success
        assert outcome.output == "MAKE IT LOUD"

    @pytest.mark.asyncio
    async def test_tool_events_streamed(self, tmp_path):
        script = write_script(
            tmp_path,
            "tools.py",
            """
            import json
            print(json.dumps({"type": "tool_use", "name": "Read", "input": {"file_path": "x.py"}}))
            print("read the file")
            """,
        )
        agent = SubprocessAgent("producer", python_command(script), repo_root=tmp_path)
        events = []

        outcome = await run_agent(agent, "", AgentContext(), on_event=events.append)

        assert [e.kind for e in events] == ["tool_use", "text"]
        assert events[0].name == "Read"
        assert outcome.output == "read the file"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure(self, tmp_path):
        script = write_script(
            tmp_path,
            "fail.py",
            """
            import sys
            sys.stderr.write("model quota exceeded")
            sys.exit(3)
            """,
        )
        agent = SubprocessAgent("producer", python_command(script), repo_root=tmp_path)

        outcome = await run_agent(agent, "", AgentContext())

        assert not outcome.success
        assert outcome.error == "model quota exceeded"

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self, tmp_path):
        script = write_script(
            tmp_path,
            "slow.py",
            """
            import time
            time.sleep(10)
            """,
        )
        agent = SubprocessAgent("producer", python_command(script), repo_root=tmp_path, timeout=0.5)

        outcome = await run_agent(agent, "", AgentContext())

        assert not outcome.success
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self, tmp_path):
        script = write_script(
            tmp_path,
            "chatty.py",
            """
            import sys, time
            print("started", flush=True)
            time.sleep(10)
            """,
        )
        agent = SubprocessAgent("producer", python_command(script), repo_root=tmp_path)
        handles = []

        def on_event(event):
            if event.content == "started":
                handles[0].cancel()

        outcome = await run_agent(
            agent, "", AgentContext(), on_event=on_event, on_start=handles.append
        )

        assert not outcome.success
        assert outcome.error == "cancelled"

    @pytest.mark.asyncio
    async def test_overlong_line_fails_and_kills_process(self, tmp_path):
        marker = tmp_path / "still_running"
        script = write_script(
            tmp_path,
            "flood.py",
            f"""
            import sys, time
            print("x" * 5000, flush=True)
            time.sleep(0.5)
            open({str(marker)!r}, "w").close()
            time.sleep(10)
            """,
        )
        agent = SubprocessAgent(
            "producer", python_command(script), repo_root=tmp_path, stream_limit=1024
        )

        outcome = await run_agent(agent, "", AgentContext())
        await asyncio.sleep(1.0)

        assert not outcome.success
        assert "exceeds 1024 bytes" in outcome.error
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_missing_executable_is_failure(self, tmp_path):
        agent = SubprocessAgent("producer", "definitely-not-a-real-binary-xyz", repo_root=tmp_path)

        outcome = await run_agent(agent, "", AgentContext())

        assert not outcome.success
        assert "failed to start" in outcome.error
