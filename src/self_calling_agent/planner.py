# planner.py
# Recursive planner: the decompose-or-solve state machine.
#
# Per task:  Received -> Deciding -> (Decomposing | Solving) -> Merged
#
# Budget accounting is done with iteration ceilings. The root runs under
# max_iterations; a decomposing parent reserves one unit for its merge and
# hands the rest down as the children's ceiling. Every entry checks depth
# and ceiling before any work, so the recursion always terminates and
# never overruns either limit.

import logging
from typing import Optional, Sequence

from self_calling_agent.backends import ReasoningBackend, merge_results, subtask_capacity
from self_calling_agent.cancel import CancellationToken
from self_calling_agent.errors import BackendFailure, BudgetExhausted
from self_calling_agent.models import Decompose, Limits, LogType, Task
from self_calling_agent.trace import TraceRecorder

logger = logging.getLogger(__name__)

# One child decision plus the parent's merge.
MIN_DECOMPOSE_BUDGET = 2


def _preview(text: str, max_len: int = 160) -> str:
    flat = " ".join(text.split())
    if len(flat) > max_len:
        return flat[:max_len] + "…"
    return flat


class RecursivePlanner:
    """
    Single-threaded planner for one run.

    Owns the iteration counter and the deepest depth seen; writes every
    decision point to the run's TraceRecorder.
    """

    def __init__(
        self,
        backend: ReasoningBackend,
        trace: TraceRecorder,
        limits: Limits,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._backend = backend
        self._trace = trace
        self._limits = limits
        self._cancel = cancel or CancellationToken()
        self._iterations = 0
        self._depth_reached = 0

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def depth_reached(self) -> int:
        return self._depth_reached

    def run(self, goal: str) -> str:
        """Plan and execute `goal`; returns the root result."""
        root = Task(description=goal, depth=0, budget=self._limits.max_iterations)
        return self._process(root, self._limits.max_iterations)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _remaining(self, ceiling: int) -> int:
        return ceiling - self._iterations

    def _consume(self, ceiling: int) -> None:
        if self._iterations >= ceiling:
            raise BudgetExhausted(f"iteration ceiling {ceiling} reached")
        self._iterations += 1

    def _checkpoint(self) -> None:
        self._cancel.raise_if_cancelled()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _process(self, task: Task, ceiling: int) -> str:
        # Received: limits are checked before anything else happens.
        if task.depth >= self._limits.max_depth:
            raise BudgetExhausted(f"depth {task.depth} is beyond the maximum of {self._limits.max_depth - 1}")
        if self._remaining(ceiling) < 1:
            raise BudgetExhausted("no iterations left for another decision")
        self._checkpoint()
        self._depth_reached = max(self._depth_reached, task.depth)

        # Deciding
        self._consume(ceiling)
        remaining = self._remaining(ceiling)
        allow_decompose = (
            task.depth + 1 < self._limits.max_depth and remaining >= MIN_DECOMPOSE_BUDGET
        )
        try:
            decision = self._backend.decide(task, remaining, allow_decompose)
        except BackendFailure as exc:
            return self._degraded_solve(task, exc)

        if isinstance(decision, Decompose):
            if allow_decompose:
                self._trace.record(
                    LogType.THOUGHT,
                    decision.thought or f"Splitting the task into {len(decision.subtasks)} subtasks.",
                    task.depth,
                )
                return self._decompose(task, decision.subtasks, ceiling)

            # The backend ignored the ceiling; its plan becomes the answer.
            self._trace.record(
                LogType.THOUGHT,
                decision.thought or "Proposed a decomposition beyond the limits.",
                task.depth,
            )
            self._trace.record(
                LogType.INFO,
                "Decomposition is not allowed here (depth or iteration limit); solving directly.",
                task.depth,
            )
            answer = "Outline: " + "; ".join(decision.subtasks)
        else:
            self._trace.record(LogType.THOUGHT, decision.thought or "Solving the task directly.", task.depth)
            answer = decision.answer

        return self._solve(task, answer)

    def _solve(self, task: Task, answer: str) -> str:
        self._trace.record(LogType.ACTION, f"Solving: {_preview(task.description)}", task.depth)
        self._trace.record(LogType.RESULT, answer, task.depth)
        logger.debug("Solved at depth %d: %s", task.depth, _preview(task.description, 60))
        return answer

    def _degraded_solve(self, task: Task, exc: BackendFailure) -> str:
        logger.warning("Decision failed at depth %d: %s", task.depth, exc)
        # The spent decision unit still gets its thought entry.
        self._trace.record(
            LogType.THOUGHT,
            f"Deciding how to handle: {_preview(task.description, 80)}",
            task.depth,
        )
        self._trace.record(LogType.ERROR, f"Reasoning backend failed: {exc}", task.depth)
        return self._solve(
            task,
            f'Unable to reason about "{_preview(task.description, 80)}"; '
            "left as a placeholder for manual follow-up.",
        )

    def _decompose(self, task: Task, subtasks: Sequence[str], ceiling: int) -> str:
        capacity = subtask_capacity(self._remaining(ceiling))
        if len(subtasks) > capacity:
            self._trace.record(
                LogType.INFO,
                f"Budget covers {capacity} of {len(subtasks)} proposed subtasks; the rest are dropped.",
                task.depth,
            )
            subtasks = subtasks[:capacity]

        # One unit stays reserved for this task's merge.
        child_ceiling = ceiling - 1
        results: list[str] = []
        for index, description in enumerate(subtasks, start=1):
            self._checkpoint()
            child = task.spawn(
                description,
                budget=self._remaining(child_ceiling),
                context=tuple(results),
            )
            try:
                result = self._process(child, child_ceiling)
            except BudgetExhausted as exc:
                skipped = len(subtasks) - index + 1
                self._trace.record(
                    LogType.INFO,
                    f"Budget exhausted ({exc}); skipping {skipped} remaining subtask(s).",
                    task.depth,
                )
                break

            results.append(result)
            self._trace.record(
                LogType.OBSERVATION,
                f"Subtask {index}/{len(subtasks)} done: {_preview(result)}",
                task.depth,
            )

        return self._merge(task, results, ceiling)

    def _merge(self, task: Task, results: list[str], ceiling: int) -> str:
        self._checkpoint()
        self._consume(ceiling)
        try:
            merged = self._backend.synthesize(task, results)
        except BackendFailure as exc:
            logger.warning("Synthesis failed at depth %d: %s", task.depth, exc)
            self._trace.record(LogType.ERROR, f"Synthesis failed: {exc}; merging results as-is.", task.depth)
            merged = merge_results(task, results)

        self._trace.record(LogType.RESULT, merged, task.depth)
        logger.debug("Merged %d result(s) at depth %d", len(results), task.depth)
        return merged
