"""Iterative multi-agent loop with judge decisions, pending queue and summaries."""

# Public API
from agent_looper.loop.controller import LoopController
from agent_looper.loop.single_pass import SinglePassExecutor
from agent_looper.loop.judge import JudgeAdapter, parse_judge_output
from agent_looper.loop.summarization import SummarizationObserver
from agent_looper.loop.streaming import LoopStreamManager

# Contracts
from agent_looper.loop.contracts import (
    AgentContext,
    AgentOutcome,
    Command,
    JudgeDecision,
    LoopEvent,
    LoopOutcome,
    PassResult,
    ProgressEvent,
    TerminationReason,
    UnrecognizedCommand,
)

# Executors
from agent_looper.loop.executor import AgentExecutor, CallableAgent, ExecutionHandle, run_agent
from agent_looper.loop.callbacks import CallbackRegistry, LoopCallback
from agent_looper.loop.commands import parse_command

__all__ = [
    "LoopController",
    "SinglePassExecutor",
    "JudgeAdapter",
    "parse_judge_output",
    "SummarizationObserver",
    "LoopStreamManager",
    "AgentContext",
    "AgentOutcome",
    "Command",
    "JudgeDecision",
    "LoopEvent",
    "LoopOutcome",
    "PassResult",
    "ProgressEvent",
    "TerminationReason",
    "UnrecognizedCommand",
    "AgentExecutor",
    "CallableAgent",
    "ExecutionHandle",
    "run_agent",
    "CallbackRegistry",
    "LoopCallback",
    "parse_command",
]
