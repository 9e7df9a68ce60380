"""Pydantic contracts for loop commands, agent events and judge decisions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

import pydantic as pd


CommandType = Literal["start", "stop", "status", "add_pending"]
ContextMode = Literal["none", "output", "accumulate"]
StepStatus = Literal["success", "failed", "skipped"]


class Command(pd.BaseModel):
    """A parsed loop command."""

    type: CommandType
    task: Optional[str] = None

    model_config = pd.ConfigDict(extra="ignore")

    @pd.field_validator("task")
    @classmethod
    def _strip_task(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @pd.model_validator(mode="after")
    def _require_task(self) -> "Command":
        if self.type in ("start", "add_pending") and not self.task:
            raise ValueError(f"'{self.type}' requires a task description")
        return self


class UnrecognizedCommand(pd.BaseModel):
    """Result of parsing input that is not a valid command."""

    raw: str
    reason: str

    model_config = pd.ConfigDict(extra="forbid")


class ProgressEvent(pd.BaseModel):
    """Raw event streamed by a sub-agent while it runs."""

    kind: Literal["tool_use", "tool_result", "text"]
    name: str = ""
    detail: Dict[str, Any] = pd.Field(default_factory=dict)
    timestamp: datetime = pd.Field(default_factory=datetime.now)

    model_config = pd.ConfigDict(extra="forbid")

    @classmethod
    def text(cls, chunk: str, name: str = "") -> "ProgressEvent":
        return cls(kind="text", name=name, detail={"content": chunk})

    @classmethod
    def tool_use(cls, name: str, tool_input: Optional[Dict[str, Any]] = None) -> "ProgressEvent":
        return cls(kind="tool_use", name=name, detail={"input": tool_input or {}})

    @property
    def content(self) -> str:
        """Text content for text events, empty otherwise."""
        value = self.detail.get("content", "")
        return value if isinstance(value, str) else str(value)


class LoopEvent(pd.BaseModel):
    """Event emitted by a controller to its sink."""

    kind: Literal["progress", "result"]
    payload: Any = None
    timestamp: datetime = pd.Field(default_factory=datetime.now)

    model_config = pd.ConfigDict(extra="forbid")


class AgentContext(pd.BaseModel):
    """Execution context handed to every sub-agent invocation."""

    source: str = "looper"
    workspace_path: Optional[str] = None
    parent_agent: Optional[str] = None
    metadata: Dict[str, str] = pd.Field(default_factory=dict)

    model_config = pd.ConfigDict(extra="ignore")


class AgentOutcome(pd.BaseModel):
    """Completion value of one sub-agent invocation."""

    success: bool
    output: str = ""
    error: Optional[str] = None

    model_config = pd.ConfigDict(extra="forbid")


class StepResult(pd.BaseModel):
    """Outcome of one sub-agent inside a single pass."""

    agent: str
    status: StepStatus
    output: str = ""
    error: Optional[str] = None

    model_config = pd.ConfigDict(extra="forbid")


class PassResult(pd.BaseModel):
    """Combined outcome of one pass over the sub-agent chain."""

    task: str
    steps: List[StepResult] = pd.Field(default_factory=list)

    model_config = pd.ConfigDict(extra="forbid")

    @property
    def success(self) -> bool:
        return bool(self.steps) and all(s.status == "success" for s in self.steps)

    @property
    def failed_step(self) -> Optional[StepResult]:
        return next((s for s in self.steps if s.status == "failed"), None)

    def render(self) -> str:
        """Render the pass as text for the judge, with per-agent status."""
        blocks = []
        for step in self.steps:
            header = f"{step.agent} result: {step.status.upper()}"
            if step.status == "success":
                body = step.output or "(no output)"
            elif step.status == "failed":
                body = step.error or "unknown error"
            else:
                body = step.error or "(skipped)"
            blocks.append(f"{header}\n{body}")
        return "\n\n".join(blocks) if blocks else "(no agents ran)"


class ContinuePayload(pd.BaseModel):
    """Judge wire payload asking for another iteration."""

    type: Literal["continue"]
    next_task: Optional[str] = pd.Field(default=None, alias="nextTask")
    reason: str

    model_config = pd.ConfigDict(extra="ignore", populate_by_name=True)


class TerminatePayload(pd.BaseModel):
    """Judge wire payload ending the loop."""

    type: Literal["terminate"]
    reason: str
    result: Optional[Any] = None

    model_config = pd.ConfigDict(extra="ignore")


class JudgeWireFormat(pd.RootModel[Union[ContinuePayload, TerminatePayload]]):
    """Discriminated union of the two judge payload shapes."""

    root: Union[ContinuePayload, TerminatePayload] = pd.Field(discriminator="type")


class JudgeDecision(pd.BaseModel):
    """Continuation decision produced once per iteration.

    Attributes:
        should_continue: Whether the loop runs another pass
        next_task: Replacement task for the next pass, if any
        reason: Explanation from the judge, or a description of the judge failure
        result: Structured payload emitted when the loop terminates
        fallback: True when the decision was synthesized after a judge failure
    """

    should_continue: bool
    next_task: Optional[str] = None
    reason: str
    result: Optional[Any] = None
    fallback: bool = False

    model_config = pd.ConfigDict(extra="forbid")

    @classmethod
    def from_payload(cls, payload: Union[ContinuePayload, TerminatePayload]) -> "JudgeDecision":
        if isinstance(payload, ContinuePayload):
            next_task = payload.next_task.strip() if payload.next_task else None
            return cls(should_continue=True, next_task=next_task or None, reason=payload.reason)
        return cls(should_continue=False, reason=payload.reason, result=payload.result)

    @classmethod
    def terminate_on_failure(cls, reason: str) -> "JudgeDecision":
        return cls(should_continue=False, reason=reason, fallback=True)


class TerminationReason(str, Enum):
    """Why a loop run ended."""

    MANUAL_STOP = "manually stopped"
    JUDGE_COMPLETED = "judge completed"
    JUDGE_FAILED = "judge failed"
    MAX_ITERATIONS = "max iterations reached"
    LOOP_ERROR = "loop error"


class LoopOutcome(pd.BaseModel):
    """Final record of one loop run."""

    reason: TerminationReason
    iterations: int
    detail: str = ""
    result: Optional[Any] = None

    model_config = pd.ConfigDict(extra="forbid")

    def describe(self) -> str:
        text = f"Loop ended ({self.reason.value}) after {self.iterations} iteration(s)"
        return f"{text}: {self.detail}" if self.detail else text
