# models.py
# Data contracts for the self-calling agent.
# No control flow lives here, only schema, validation and normalisation.

import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_ITERATIONS = 12
MAX_DEPTH_CEILING = 6
MAX_ITERATIONS_CEILING = 32


class LogType(str, Enum):
    """Kinds of entries in a run's reasoning trace."""

    GOAL = "goal"
    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"
    RESULT = "result"
    INFO = "info"
    ERROR = "error"


class _WireModel(BaseModel):
    """Frozen model serialised with the camelCase keys callers consume."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------


class AgentLogEntry(_WireModel):
    """Immutable record of one reasoning step."""

    id: str = Field(..., description="Unique within the run (and, in practice, across runs).")
    type: LogType
    message: str
    depth: int = Field(..., ge=0)
    timestamp: datetime


# ---------------------------------------------------------------------------
# Tasks and decisions
# ---------------------------------------------------------------------------


class Task(BaseModel):
    """A node of the recursion tree. Children are spawned, never edited in."""

    model_config = ConfigDict(frozen=True)

    description: str = Field(..., min_length=1)
    depth: int = Field(default=0, ge=0)
    parent: Optional["Task"] = Field(default=None, repr=False, exclude=True)
    budget: int = Field(default=0, ge=0, description="Remaining iterations when the task was created.")
    context: tuple[str, ...] = Field(
        default=(), description="Results of earlier siblings, in completion order."
    )

    @property
    def root(self) -> "Task":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def spawn(self, description: str, budget: int, context: tuple[str, ...] = ()) -> "Task":
        return Task(
            description=description,
            depth=self.depth + 1,
            parent=self,
            budget=max(budget, 0),
            context=context,
        )


class Decompose(BaseModel):
    """Split the task into ordered subtasks."""

    model_config = ConfigDict(frozen=True)

    subtasks: list[str] = Field(..., min_length=1)
    thought: str = ""


class Solve(BaseModel):
    """Answer the task directly."""

    model_config = ConfigDict(frozen=True)

    answer: str
    thought: str = ""


Decision = Union[Decompose, Solve]


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


def _coerce_limit(value: Any, default: int, ceiling: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return min(max(math.floor(number), 1), ceiling)


class Limits(_WireModel):
    """Resource limits for one run. Both values are positive integers."""

    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1)
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)

    @classmethod
    def normalize(
        cls,
        max_depth: Any = None,
        max_iterations: Any = None,
        *,
        default_depth: int = DEFAULT_MAX_DEPTH,
        default_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> "Limits":
        """
        Coerce caller-supplied values permissively.

        Absent, boolean, non-numeric and non-finite values take the defaults;
        everything else is floored and clamped into the supported range.
        """
        return cls(
            max_depth=_coerce_limit(max_depth, default_depth, MAX_DEPTH_CEILING),
            max_iterations=_coerce_limit(max_iterations, default_iterations, MAX_ITERATIONS_CEILING),
        )


# ---------------------------------------------------------------------------
# Run result
# ---------------------------------------------------------------------------


class RunMetadata(_WireModel):
    started_at: datetime
    finished_at: datetime
    duration_ms: float = Field(..., ge=0)


class AgentRun(_WireModel):
    """Complete, immutable output of one agent run."""

    goal: str
    steps: tuple[AgentLogEntry, ...]
    conclusion: str
    iterations: int = Field(..., ge=0)
    depth_reached: int = Field(..., ge=0)
    used_model: bool
    metadata: RunMetadata
    backend: str = "heuristic"
    incomplete: bool = Field(default=False, description="True when the run was cancelled or timed out.")

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise with the camelCase wire keys."""
        return self.model_dump(mode="json", by_alias=True)
