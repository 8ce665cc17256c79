# agent.py
# Run orchestrator: the single entry point into the agent core.
#
# Control flow:
#   validate goal -> normalise limits -> pick backend (once) -> record goal
#   -> recursive planner -> conclusion -> assemble AgentRun
#
# The orchestrator owns one TraceRecorder and one planner per run, so
# concurrent runs share no mutable state.

import logging
import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from self_calling_agent.backends import HeuristicBackend, ModelBackend, ReasoningBackend
from self_calling_agent.cancel import CancellationToken
from self_calling_agent.config import AgentConfig
from self_calling_agent.errors import AgentError, CancelledError, InternalFault, InvalidInput
from self_calling_agent.models import AgentRun, Limits, LogType, RunMetadata
from self_calling_agent.planner import RecursivePlanner
from self_calling_agent.trace import Listener, TraceRecorder

logger = logging.getLogger(__name__)


def _partial_conclusion(trace: TraceRecorder) -> str:
    last = trace.last(LogType.RESULT)
    if last is None:
        return "Run stopped before any result was produced."
    return f"Run stopped early. Latest result: {last.message}"


class SelfCallingAgent:
    """
    Orchestrates self-calling agent runs under a fixed configuration.

    Example:
        agent = SelfCallingAgent(AgentConfig())
        run = agent.run("Plan a 2-day offsite", max_depth=2, max_iterations=8)
        print(run.conclusion)
    """

    def __init__(self, config: Optional[AgentConfig] = None) -> None:
        self._config = config or AgentConfig()

    @property
    def config(self) -> AgentConfig:
        return self._config

    def _select_backend(self, cancel: CancellationToken) -> ReasoningBackend:
        if self._config.has_model_capability:
            return ModelBackend.from_config(self._config, cancel=cancel)
        return HeuristicBackend()

    def run(
        self,
        goal: Any,
        max_depth: Any = None,
        max_iterations: Any = None,
        *,
        cancel: Optional[CancellationToken] = None,
        listener: Optional[Listener] = None,
    ) -> AgentRun:
        """
        Run the agent on `goal` and return the complete AgentRun.

        Raises InvalidInput for an empty goal (before anything is traced) and
        InternalFault if the run aborts unexpectedly. Backend failures and
        exhausted budgets never escape; a cancelled run comes back with
        incomplete=True.
        """
        if not isinstance(goal, str) or not goal.strip():
            raise InvalidInput("Goal is required")
        goal = goal.strip()

        limits = Limits.normalize(
            max_depth,
            max_iterations,
            default_depth=self._config.default_max_depth,
            default_iterations=self._config.default_max_iterations,
        )
        cancel = cancel or CancellationToken()
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()

        try:
            backend = self._select_backend(cancel)
            trace = TraceRecorder(listener=listener)
            planner = RecursivePlanner(backend, trace, limits, cancel)
            logger.info(
                "Run %s started (backend=%s, max_depth=%d, max_iterations=%d)",
                trace.run_id,
                backend.name,
                limits.max_depth,
                limits.max_iterations,
            )

            trace.record(LogType.GOAL, goal, 0)
            trace.record(
                LogType.INFO,
                f"Using {'model-assisted' if backend.uses_model else 'heuristic'} reasoning "
                f"with max depth {limits.max_depth} and {limits.max_iterations} iterations.",
                0,
            )

            incomplete = False
            try:
                conclusion = planner.run(goal)
            except CancelledError as exc:
                logger.warning("Run %s cancelled: %s", trace.run_id, exc)
                incomplete = True
                trace.record(LogType.ERROR, f"Run cancelled: {exc}", 0)
                conclusion = _partial_conclusion(trace)
            else:
                trace.record(
                    LogType.INFO,
                    f"Finished after {planner.iterations} iteration(s), "
                    f"reaching depth {planner.depth_reached}.",
                    0,
                )
        except AgentError:
            raise
        except Exception as exc:
            logger.exception("Agent run failed")
            raise InternalFault(f"Agent run failed: {exc}") from exc

        finished_at = datetime.now(timezone.utc)
        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.info("Run %s finished in %.1f ms", trace.run_id, duration_ms)

        return AgentRun(
            goal=goal,
            steps=trace.entries,
            conclusion=conclusion,
            iterations=planner.iterations,
            depth_reached=planner.depth_reached,
            used_model=backend.uses_model,
            backend=backend.name,
            incomplete=incomplete,
            metadata=RunMetadata(
                started_at=started_at,
                finished_at=max(finished_at, started_at),
                duration_ms=duration_ms,
            ),
        )


def run_self_calling_agent(
    goal: Any,
    options: Optional[Mapping[str, Any]] = None,
    *,
    config: Optional[AgentConfig] = None,
    cancel: Optional[CancellationToken] = None,
    listener: Optional[Listener] = None,
) -> AgentRun:
    """
    Module-level entry point.

    `options` takes the wire keys `maxDepth` and `maxIterations`. Without an
    explicit config the environment is read here, at run start.
    """
    options = options or {}
    agent = SelfCallingAgent(config or AgentConfig.from_env())
    return agent.run(
        goal,
        options.get("maxDepth"),
        options.get("maxIterations"),
        cancel=cancel,
        listener=listener,
    )
