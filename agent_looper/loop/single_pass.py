"""Single-pass execution of the ordered sub-agent chain."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from agent_looper.loop.callbacks import CallbackRegistry
from agent_looper.loop.contracts import (
    AgentContext,
    ContextMode,
    PassResult,
    ProgressEvent,
    StepResult,
)
from agent_looper.loop.executor import AgentExecutor, ExecutionHandle, run_agent

logger = logging.getLogger(__name__)


class SinglePassExecutor:
    """Runs a fixed, ordered chain of sub-agents for one iteration.

    Each agent runs to completion before the next starts. Events are forwarded
    live to the callback registry as they arrive. When an agent fails, the
    remaining agents of the pass are skipped; the failure is recorded in the
    returned PassResult and never raised.

    Context modes:
        - ``none``: every agent receives the task unchanged
        - ``output``: each agent also receives the previous agent's output
        - ``accumulate``: each agent also receives every earlier output
    """

    def __init__(
        self,
        agents: Sequence[AgentExecutor],
        context_mode: ContextMode = "none",
        context: Optional[AgentContext] = None,
    ):
        """Initialize the executor.

        Args:
            agents: Sub-agents in execution order, e.g. producer then critic.
            context_mode: How earlier outputs are passed to later agents.
            context: Execution context for every invocation.

        Raises:
            ValueError: If no agents are given or context_mode is unknown.
        """
        if not agents:
            raise ValueError("SinglePassExecutor requires at least one agent")
        if context_mode not in ("none", "output", "accumulate"):
            raise ValueError(f"Unknown context mode: {context_mode}")

        self._agents = list(agents)
        self._context_mode = context_mode
        self._context = context or AgentContext()

    @property
    def agent_names(self) -> List[str]:
        return [agent.name for agent in self._agents]

    @property
    def context_mode(self) -> ContextMode:
        return self._context_mode

    def build_prompt(self, task: str, previous: List[StepResult]) -> str:
        """Build the input for the next agent from the task and earlier steps."""
        if self._context_mode == "none" or not previous:
            return task

        if self._context_mode == "output":
            last = previous[-1]
            return f"{task}\n\nOutput from {last.agent}:\n{last.output}"

        sections = [task]
        for step in previous:
            sections.append(f"Output from {step.agent}:\n{step.output}")
        return "\n\n".join(sections)

    async def run(
        self,
        task: str,
        callbacks: Optional[CallbackRegistry] = None,
        on_handle: Optional[Callable[[Optional[ExecutionHandle]], None]] = None,
    ) -> PassResult:
        """Run the chain once for ``task``.

        Args:
            task: Current task description.
            callbacks: Registry notified of agent start/end/failure and raw events.
            on_handle: Receives each agent's handle when it starts, and None after it ends.

        Returns:
            PassResult with one StepResult per agent.
        """
        registry = callbacks or CallbackRegistry()
        steps: List[StepResult] = []
        failed_agent: Optional[str] = None

        for agent in self._agents:
            if failed_agent is not None:
                steps.append(
                    StepResult(
                        agent=agent.name,
                        status="skipped",
                        error=f"skipped because {failed_agent} failed",
                    )
                )
                continue

            prompt = self.build_prompt(task, steps)
            registry.notify("on_agent_start", agent.name)

            def forward(event: ProgressEvent, _name: str = agent.name) -> None:
                registry.forward_event(_name, event)

            try:
                outcome = await run_agent(
                    agent, prompt, self._context, on_event=forward, on_start=on_handle
                )
            finally:
                if on_handle is not None:
                    on_handle(None)

            if outcome.success:
                logger.info(f"[{agent.name}] Completed")
                steps.append(StepResult(agent=agent.name, status="success", output=outcome.output))
                registry.notify("on_agent_end", agent.name, outcome)
            else:
                error = outcome.error or "unknown error"
                logger.warning(f"[{agent.name}] Failed: {error}")
                steps.append(
                    StepResult(agent=agent.name, status="failed", output=outcome.output, error=error)
                )
                registry.notify("on_agent_failed", agent.name, error)
                failed_agent = agent.name

        return PassResult(task=task, steps=steps)
