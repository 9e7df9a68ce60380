"""Sandboxed subprocess execution for command-line sub-agents."""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
import time
from pathlib import Path
from typing import List, Optional

from agent_looper.loop.contracts import AgentContext, AgentOutcome, ProgressEvent
from agent_looper.loop.executor import EventSink, ExecutionHandle

logger = logging.getLogger(__name__)

BLOCKED_SHELL_CHARACTERS = {
    "|",
    ";",
    "`",
    "$(",
    "&",
    "&&",
    "||",
    ">",
    "<",
}

TOOL_EVENT_TYPES = {"tool_use", "tool_result"}

# Longest stdout line accepted from an agent.
STREAM_LIMIT = 8 * 1024 * 1024


class SecurityError(Exception):
    """Raised when a command violates security rules."""


class CommandTimeoutError(Exception):
    """Raised when a command exceeds the timeout limit."""


class CommandExecutionError(Exception):
    """Raised when a command fails to execute."""


def _is_in_quotes(command: str, char: str) -> bool:
    idx = command.find(char)
    if idx == -1:
        return False

    in_single_quote = False
    in_double_quote = False

    for i, c in enumerate(command):
        if c == "'" and not in_double_quote:
            in_single_quote = not in_single_quote
        elif c == '"' and not in_single_quote:
            in_double_quote = not in_double_quote
        elif i == idx and (in_single_quote or in_double_quote):
            return True

    return False


def parse_output_line(line: str, agent_name: str = "") -> ProgressEvent:
    """Turn one stdout line into a ProgressEvent.

    Lines holding a JSON object with ``"type": "tool_use"`` or
    ``"tool_result"`` become tool events; a ``"type": "text"`` object becomes a
    text event with its ``text`` field; anything else is plain text.
    """
    stripped = line.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            data = None

        if isinstance(data, dict):
            event_type = data.get("type")
            if event_type in TOOL_EVENT_TYPES:
                detail = {k: v for k, v in data.items() if k not in ("type", "name")}
                return ProgressEvent(kind=event_type, name=str(data.get("name", "")), detail=detail)
            if event_type == "text" and isinstance(data.get("text"), str):
                return ProgressEvent.text(data["text"], name=agent_name)

    return ProgressEvent.text(line, name=agent_name)


class SubprocessAgent:
    """Sub-agent that runs a command line with the prompt on stdin.

    stdout is streamed line by line to the event sink while the process runs.
    The command is executed without a shell; shell metacharacters outside
    quotes are rejected and, when ``allowed_tools`` is given, the executable
    must be in the whitelist.
    """

    def __init__(
        self,
        name: str,
        command: str,
        repo_root: Path | None = None,
        cwd: str = ".",
        timeout: float = 300,
        allowed_tools: List[str] | None = None,
        stream_limit: int = STREAM_LIMIT,
    ):
        self.name = name
        self.command = command
        self.repo_root = Path(repo_root).resolve() if repo_root else Path.cwd().resolve()
        self.cwd = cwd
        self.timeout = timeout
        self.allowed_tools = allowed_tools
        self.stream_limit = stream_limit

        self._check_command(command)
        if not self._validate_working_directory(cwd):
            raise SecurityError(f"Invalid working directory: {cwd}")

    def validate_command(self, command: str) -> bool:
        try:
            self._check_command(command)
        except SecurityError:
            return False
        return True

    def _check_command(self, command: str) -> None:
        if not command.strip():
            raise SecurityError("Command is empty")

        try:
            command_start = shlex.split(command)[0]
        except ValueError as e:
            raise SecurityError(f"Command could not be parsed: {e}")
        if self.allowed_tools is not None and command_start not in self.allowed_tools:
            raise SecurityError(f"Tool '{command_start}' is not in whitelist: {self.allowed_tools}")

        for blocked in BLOCKED_SHELL_CHARACTERS:
            if blocked in command and not _is_in_quotes(command, blocked):
                raise SecurityError(f"Command contains blocked characters: {blocked}")

    def _validate_working_directory(self, cwd: str) -> bool:
        if Path(cwd).is_absolute():
            return False

        resolved_path = (self.repo_root / cwd).resolve()
        try:
            resolved_path.relative_to(self.repo_root)
            return True
        except ValueError:
            return False

    def start(self, prompt: str, context: AgentContext, sink: EventSink) -> ExecutionHandle:
        task = asyncio.get_running_loop().create_task(self._run(prompt, context, sink))
        return ExecutionHandle(task)

    async def _run(self, prompt: str, context: AgentContext, sink: EventSink) -> AgentOutcome:
        command_parts = shlex.split(self.command)
        full_cwd = self.repo_root / self.cwd
        if context.workspace_path and self.cwd == ".":
            full_cwd = Path(context.workspace_path)

        start_time = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *command_parts,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=full_cwd,
                limit=self.stream_limit,
            )
        except OSError as e:
            raise CommandExecutionError(f"Command '{self.command}' failed to start: {e}")

        text_lines: List[str] = []

        async def feed() -> None:
            assert proc.stdin is not None
            try:
                proc.stdin.write(prompt.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                logger.debug(f"[{self.name}] Process closed stdin early")
            finally:
                proc.stdin.close()

        async def pump() -> None:
            assert proc.stdout is not None
            while True:
                try:
                    raw = await proc.stdout.readline()
                except ValueError as e:
                    raise CommandExecutionError(
                        f"Output line from '{self.name}' exceeds {self.stream_limit} bytes"
                    ) from e
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                event = parse_output_line(line, self.name)
                if event.kind == "text":
                    text_lines.append(event.content)
                sink(event)

        async def drain_stderr() -> bytes:
            assert proc.stderr is not None
            return await proc.stderr.read()

        workers = [
            asyncio.ensure_future(worker) for worker in (feed(), pump(), drain_stderr())
        ]
        try:
            _, _, stderr = await asyncio.wait_for(asyncio.gather(*workers), timeout=self.timeout)
            returncode = await proc.wait()
        except asyncio.TimeoutError:
            raise CommandTimeoutError(
                f"Command '{self.command}' timed out after {self.timeout} seconds"
            )
        finally:
            # The process never outlives the invocation, whatever ended it.
            for worker in workers:
                worker.cancel()
            await self._kill(proc)

        duration = time.monotonic() - start_time
        logger.debug(f"[{self.name}] exit={returncode} duration={duration:.2f}s")

        output = "\n".join(text_lines)
        if returncode == 0:
            return AgentOutcome(success=True, output=output)

        error_text = stderr.decode("utf-8", errors="replace").strip()
        return AgentOutcome(
            success=False,
            output=output,
            error=error_text or f"exit code {returncode}",
        )

    async def _kill(self, proc: "asyncio.subprocess.Process") -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    def __repr__(self) -> str:
        return f"SubprocessAgent(name={self.name!r}, command={self.command!r})"
