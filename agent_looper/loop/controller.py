"""Loop controller: command handling plus the background iteration loop.

The controller answers every submitted command immediately and runs the
iterations as a separate asyncio task. The two paths communicate only through
the LoopStateMachine and the event sink.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Set

from agent_looper.fsm.loop_fsm import LoopStateMachine
from agent_looper.fsm.snapshot import LoopSnapshot
from agent_looper.loop.callbacks import CallbackRegistry, LoopCallback
from agent_looper.loop.commands import parse_command
from agent_looper.loop.contracts import (
    LoopEvent,
    LoopOutcome,
    PassResult,
    TerminationReason,
    UnrecognizedCommand,
)
from agent_looper.loop.executor import ExecutionHandle
from agent_looper.loop.judge import JudgeAdapter
from agent_looper.loop.single_pass import SinglePassExecutor
from agent_looper.loop.summarization import SummarizationObserver

logger = logging.getLogger(__name__)

LoopEventSink = Callable[[LoopEvent], None]


class LoopController:
    """Drives producer/critic passes and judge decisions for one conversation.

    Commands:
        - ``start <task>``: start a run when idle, otherwise queue the task
        - ``add_pending <task>``: same as ``start``
        - ``stop``: stop at the next iteration boundary
        - ``status``: multi-line state report

    A stop issued mid-pass lets the pass finish and the judge answer once more
    for that iteration. The flag is then seen at the top of the next iteration.
    A judge terminate on that last call keeps the judge's reason; otherwise the
    run ends as manually stopped.

    Example:
        >>> controller = LoopController(single_pass, judge, max_iterations=3, sink=print)
        >>> controller.submit("start write the parser")
        'Looper started with task: write the parser'
    """

    def __init__(
        self,
        single_pass: SinglePassExecutor,
        judge: JudgeAdapter,
        *,
        max_iterations: int = 5,
        sink: Optional[LoopEventSink] = None,
        callbacks: Optional[CallbackRegistry] = None,
        summarizer: Optional[SummarizationObserver] = None,
        implicit_start: bool = False,
    ):
        """Initialize the controller.

        Args:
            single_pass: Executor for the ordered sub-agent chain.
            judge: Adapter consulted after every pass.
            max_iterations: Upper bound on passes per run.
            sink: Receives every progress and result event.
            callbacks: Observer hooks notified at fixed points of the loop.
            summarizer: Optional observer producing periodic progress summaries.
            implicit_start: Treat unrecognized free text as ``start <text>``.

        Raises:
            ValueError: If max_iterations is less than 1.
        """
        self._fsm = LoopStateMachine(max_iterations=max_iterations)
        self._single_pass = single_pass
        self._judge = judge
        self._sink = sink
        self._callbacks = callbacks or CallbackRegistry()
        self._summarizer = summarizer
        self._implicit_start = implicit_start

        self._runs: Set[asyncio.Task[None]] = set()
        self._active_handle: Optional[ExecutionHandle] = None
        self._aborted = False
        self._last_outcome: Optional[LoopOutcome] = None

        self._callbacks.add(
            LoopCallback(name="sub-status", on_agent_start=self._on_agent_start)
        )
        if summarizer is not None:
            if summarizer.on_summary is None:
                summarizer.on_summary = self.emit_progress
            self._callbacks.add(summarizer.as_callback())

    @property
    def state(self) -> LoopStateMachine:
        return self._fsm

    @property
    def is_running(self) -> bool:
        return self._fsm.is_running

    @property
    def last_outcome(self) -> Optional[LoopOutcome]:
        return self._last_outcome

    @property
    def agent_names(self) -> List[str]:
        return self._single_pass.agent_names

    @property
    def judge_name(self) -> str:
        return self._judge.judge_name

    @property
    def max_iterations(self) -> int:
        return self._fsm.max_iterations

    def submit(self, raw_input: str) -> str:
        """Handle one command and return its acknowledgment immediately.

        Args:
            raw_input: Raw command text.

        Returns:
            Acknowledgment text.

        Raises:
            RuntimeError: If a run must be started and no event loop is running.
        """
        parsed = parse_command(raw_input, implicit_start=self._implicit_start)

        if isinstance(parsed, UnrecognizedCommand):
            logger.info(f"Rejected command {parsed.raw!r}: {parsed.reason}")
            return f"Unrecognized command: {parsed.reason}"

        if parsed.type == "status":
            return self.status()

        if parsed.type == "stop":
            if self._fsm.request_stop():
                logger.info("Stop requested")
                return "Stop signal sent; the loop will stop after the current iteration"
            return "Looper is not running"

        if parsed.task is None:
            return f"Unrecognized command: '{parsed.type}' requires a task description"
        return self._start_or_enqueue(parsed.task)

    def _start_or_enqueue(self, task: str) -> str:
        with self._fsm.state_lock:
            if self._fsm.is_running:
                position = self._fsm.enqueue(task)
                logger.info(f"Queued pending task #{position}: {task}")
                return f"Looper is running; task queued at position {position}: {task}"

            loop = asyncio.get_running_loop()
            self._fsm.begin_run(task)
            self._aborted = False
            run = loop.create_task(self._run_loop(task))
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

        logger.info(f"Started looper with task: {task}")
        return f"Looper started with task: {task}"

    def cancel(self, abort_in_flight: bool = False) -> bool:
        """Request a stop at the next iteration boundary.

        Args:
            abort_in_flight: Also cancel the sub-agent invocation currently running.

        Returns:
            True if a run was active.
        """
        stopped = self._fsm.request_stop()
        if stopped and abort_in_flight:
            self._aborted = True
            handle = self._active_handle
            if handle is not None:
                logger.info("Aborting in-flight sub-agent")
                handle.cancel()
        return stopped

    def status(self) -> str:
        return self._fsm.snapshot().render()

    def snapshot(self) -> LoopSnapshot:
        return self._fsm.snapshot()

    async def wait(self) -> Optional[LoopOutcome]:
        """Wait for every background run, including final summaries, and return the last outcome."""
        while True:
            pending = {t for t in self._runs if not t.done()}
            if not pending:
                break
            await asyncio.wait(pending)
        return self._last_outcome

    async def shutdown(self) -> Optional[LoopOutcome]:
        """Stop the run, abort whatever is in flight, and wait for it to end."""
        self.cancel(abort_in_flight=True)
        return await self.wait()

    def emit_progress(self, message: str) -> None:
        self._emit(LoopEvent(kind="progress", payload=message))

    def _emit_result(self, payload: Any) -> None:
        self._emit(LoopEvent(kind="result", payload=payload))

    def _emit(self, event: LoopEvent) -> None:
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            logger.warning(f"Event sink failed for {event.kind} event: {e}")

    def _on_agent_start(self, agent: str) -> None:
        self._fsm.set_sub_status(f"awaiting {agent}")

    def _track_handle(self, handle: Optional[ExecutionHandle]) -> None:
        self._active_handle = handle
        if handle is not None and self._aborted:
            handle.cancel()

    def _describe_pass(self, iteration: int, result: PassResult) -> str:
        failed = result.failed_step
        if failed is not None:
            return f"Iteration {iteration} pass finished: {failed.agent} failed ({failed.error})"
        return f"Iteration {iteration} pass finished: all agents succeeded"

    async def _run_loop(self, task: str) -> None:
        reason: Optional[TerminationReason] = None
        detail = ""
        result: Any = None
        cancelled = False

        self._callbacks.notify("on_loop_start", task)
        self.emit_progress(f"Looper started: {task}")
        if self._summarizer is not None:
            self._summarizer.start_timer()

        try:
            while self._fsm.can_iterate():
                iteration = self._fsm.advance_iteration()
                current = self._fsm.current_task
                logger.info(f"Iteration {iteration}/{self._fsm.max_iterations}: {current}")
                self._callbacks.notify("on_iteration_start", iteration, current)
                self.emit_progress(f"Iteration {iteration}/{self._fsm.max_iterations}: {current}")

                pass_result = await self._single_pass.run(
                    current, self._callbacks, on_handle=self._track_handle
                )
                self._callbacks.notify("on_iteration_end", iteration, pass_result)
                self.emit_progress(self._describe_pass(iteration, pass_result))

                self._fsm.set_sub_status("judging")
                decision = await self._judge.decide(
                    current,
                    iteration,
                    pass_result,
                    self._fsm.pending_queue,
                    on_handle=self._track_handle,
                )
                self._fsm.set_sub_status(None)

                if not decision.should_continue:
                    if decision.fallback:
                        reason = (
                            TerminationReason.MANUAL_STOP
                            if self._aborted
                            else TerminationReason.JUDGE_FAILED
                        )
                    else:
                        reason = TerminationReason.JUDGE_COMPLETED
                    detail = decision.reason
                    result = decision.result
                    self.emit_progress(f"Judge decided to stop: {decision.reason}")
                    if decision.result is not None:
                        self._emit_result(decision.result)
                    break

                self.emit_progress(f"Judge decided to continue: {decision.reason}")
                if decision.next_task:
                    self._fsm.set_current_task(decision.next_task)

            if reason is None:
                if self._fsm.should_stop:
                    reason = TerminationReason.MANUAL_STOP
                else:
                    reason = TerminationReason.MAX_ITERATIONS
        except asyncio.CancelledError:
            cancelled = True
            reason = TerminationReason.MANUAL_STOP
            detail = "loop task cancelled"
            raise
        except Exception as e:
            logger.exception(f"Loop failed: {e}")
            reason = TerminationReason.LOOP_ERROR
            detail = f"{type(e).__name__}: {e}"
        finally:
            if self._summarizer is not None:
                self._summarizer.stop_timer()
            outcome = LoopOutcome(
                reason=reason or TerminationReason.LOOP_ERROR,
                iterations=self._fsm.iteration,
                detail=detail,
                result=result,
            )
            self._last_outcome = outcome
            self._active_handle = None
            self._fsm.finish_run()
            logger.info(outcome.describe())
            try:
                await self._close_summarizer(cancelled)
            finally:
                self.emit_progress(outcome.describe())
                self._callbacks.notify("on_loop_end", outcome)

    async def _close_summarizer(self, cancelled: bool) -> None:
        # Runs after the state is IDLE, so a new run may already be starting.
        if self._summarizer is None:
            return
        if cancelled:
            self._summarizer.abort()
            return
        try:
            await self._summarizer.aclose()
        except asyncio.CancelledError:
            if not self._fsm.is_running:
                self._summarizer.abort()
            raise
        except Exception as e:
            logger.warning(f"Final summary failed: {e}")

    def __repr__(self) -> str:
        return f"LoopController(agents={self.agent_names}, judge={self.judge_name!r}, {self._fsm!r})"
