import math
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from self_calling_agent.models import (
    AgentLogEntry,
    AgentRun,
    Decompose,
    Limits,
    LogType,
    RunMetadata,
    Task,
)

# ---------------------------------------------------------------------------
# Limits normalisation
# ---------------------------------------------------------------------------

def test_limits_defaults_when_absent():
    limits = Limits.normalize()
    assert limits.max_depth == 3
    assert limits.max_iterations == 12

@pytest.mark.parametrize("bad", [None, True, "abc", math.nan, math.inf, -math.inf, object()])
def test_limits_invalid_values_fall_back_to_defaults(bad):
    limits = Limits.normalize(bad, bad)
    assert (limits.max_depth, limits.max_iterations) == (3, 12)

def test_limits_floor_and_clamp():
    assert Limits.normalize(2.9, 7.5) == Limits(max_depth=2, max_iterations=7)
    assert Limits.normalize(0, -4) == Limits(max_depth=1, max_iterations=1)
    assert Limits.normalize(99, 1000) == Limits(max_depth=6, max_iterations=32)
    assert Limits.normalize("4", "10") == Limits(max_depth=4, max_iterations=10)

def test_limits_custom_defaults():
    limits = Limits.normalize(default_depth=2, default_iterations=5)
    assert (limits.max_depth, limits.max_iterations) == (2, 5)

def test_limits_reject_non_positive_when_built_directly():
    with pytest.raises(ValidationError):
        Limits(max_depth=0, max_iterations=3)

# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def test_task_spawn_creates_child_without_mutating_parent():
    root = Task(description="Ship the release", budget=10)
    child = root.spawn("Write changelog", budget=6, context=("tests pass",))

    assert child.depth == 1
    assert child.parent is root
    assert child.root is root
    assert child.context == ("tests pass",)
    assert root.depth == 0
    with pytest.raises(ValidationError):
        root.description = "changed"

def test_task_spawn_clamps_negative_budget():
    child = Task(description="a").spawn("b", budget=-3)
    assert child.budget == 0

def test_decompose_requires_subtasks():
    with pytest.raises(ValidationError):
        Decompose(subtasks=[])

# ---------------------------------------------------------------------------
# Wire shape
# ---------------------------------------------------------------------------

def test_agent_run_serialises_with_camel_case_keys():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    entry = AgentLogEntry(id="r-0001", type=LogType.GOAL, message="Goal", depth=0, timestamp=now)
    run = AgentRun(
        goal="Goal",
        steps=[entry],
        conclusion="Done",
        iterations=1,
        depth_reached=0,
        used_model=False,
        metadata=RunMetadata(started_at=now, finished_at=now, duration_ms=0.5),
    )

    data = run.to_json_dict()

    assert set(data) >= {"goal", "steps", "conclusion", "iterations", "depthReached", "usedModel", "metadata"}
    assert set(data["metadata"]) == {"startedAt", "finishedAt", "durationMs"}
    assert set(data["steps"][0]) == {"id", "type", "message", "depth", "timestamp"}
    assert data["steps"][0]["type"] == "goal"
    assert isinstance(data["steps"][0]["timestamp"], str)
    assert data["incomplete"] is False
