import json
import os
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
from openai import OpenAIError
from pydantic import SecretStr, ValidationError

from self_calling_agent.agent import SelfCallingAgent, run_self_calling_agent
from self_calling_agent.backends import HeuristicBackend
from self_calling_agent.cancel import CancellationToken
from self_calling_agent.config import AgentConfig
from self_calling_agent.errors import InternalFault, InvalidInput
from self_calling_agent.models import LogType

RUST_GOAL = (
    "Research and outline a practical weekend plan for learning the basics of Rust, "
    "including resources and checkpoints."
)


def _count(run, type):
    return sum(1 for step in run.steps if step.type == type)


def _model_client(*replies, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.chat.completions.create.side_effect = side_effect
    else:
        responses = []
        for reply in replies:
            response = MagicMock()
            response.choices = [MagicMock(message=MagicMock(content=reply))]
            responses.append(response)
        client.chat.completions.create.side_effect = responses
    return client

# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

def test_offsite_scenario_without_model():
    run = SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite", max_depth=2, max_iterations=8)

    assert run.used_model is False
    assert run.backend == "heuristic"
    assert run.steps[0].type == LogType.GOAL
    assert run.steps[0].depth == 0
    assert run.steps[0].message == "Plan a 2-day offsite"
    assert run.depth_reached <= 2
    assert run.iterations <= 8
    assert run.conclusion.strip()
    assert run.incomplete is False

@pytest.mark.parametrize("goal", ["", "   \n\t ", None, 42])
def test_empty_goal_is_rejected_before_tracing(goal):
    listener = MagicMock()
    with pytest.raises(InvalidInput, match="Goal is required"):
        SelfCallingAgent(AgentConfig()).run(goal, listener=listener)
    listener.assert_not_called()

def test_goal_is_trimmed():
    run = SelfCallingAgent(AgentConfig()).run("  Plan a 2-day offsite \n")
    assert run.goal == "Plan a 2-day offsite"

def test_max_depth_one_never_decomposes():
    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, max_depth=1, max_iterations=20)
    assert run.depth_reached == 0
    assert all(step.depth == 0 for step in run.steps)
    assert _count(run, LogType.OBSERVATION) == 0
    assert _count(run, LogType.THOUGHT) == 1
    assert run.iterations == 1

def test_single_iteration_budget():
    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, max_depth=4, max_iterations=1)
    assert _count(run, LogType.THOUGHT) == 1
    assert _count(run, LogType.ACTION) == 1
    assert _count(run, LogType.RESULT) == 1
    assert _count(run, LogType.OBSERVATION) == 0
    assert run.conclusion == run.steps[-2].message
    assert run.iterations == 1

def test_decomposing_run_respects_limits_and_trace_order():
    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, max_depth=3, max_iterations=12)

    assert run.depth_reached >= 1
    assert run.iterations <= 12
    assert _count(run, LogType.OBSERVATION) >= 2
    stamps = [step.timestamp for step in run.steps]
    assert stamps == sorted(stamps)
    assert all(0 <= step.depth <= run.depth_reached for step in run.steps)
    assert run.conclusion.startswith("Combined result for")

def test_heuristic_runs_are_deterministic():
    agent = SelfCallingAgent(AgentConfig())
    first = agent.run(RUST_GOAL, 3, 12)
    second = agent.run(RUST_GOAL, 3, 12)

    shape = lambda run: [(s.type, s.depth, s.message) for s in run.steps]
    assert shape(first) == shape(second)
    assert first.conclusion == second.conclusion
    assert {s.id for s in first.steps}.isdisjoint(s.id for s in second.steps)

def test_concurrent_runs_are_independent():
    agent = SelfCallingAgent(AgentConfig())
    with ThreadPoolExecutor(max_workers=2) as pool:
        offsite = pool.submit(agent.run, "Plan a 2-day offsite", 2, 8)
        rust = pool.submit(agent.run, RUST_GOAL, 3, 12)
        a, b = offsite.result(), rust.result()

    assert {s.id for s in a.steps}.isdisjoint(s.id for s in b.steps)
    assert a.iterations == 1
    assert b.iterations > 1
    assert a.goal != b.goal

def test_invalid_limits_fall_back_to_defaults():
    run = SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite", "abc", float("inf"))
    assert "max depth 3 and 12 iterations" in run.steps[1].message

def test_metadata_timing():
    run = SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite")
    assert run.metadata.finished_at >= run.metadata.started_at
    assert run.metadata.duration_ms >= 0

def test_listener_streams_every_step():
    seen = []
    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, listener=seen.append)
    assert tuple(seen) == run.steps

def test_json_shape_round_trips_through_json_module():
    run = SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite")
    data = json.loads(json.dumps(run.to_json_dict()))
    assert data["usedModel"] is False
    assert data["depthReached"] == 0
    assert data["steps"][0]["type"] == "goal"
    assert isinstance(data["steps"], list)

def test_finished_run_trace_cannot_be_changed():
    run = SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite")
    before = len(run.steps)

    with pytest.raises(AttributeError):
        run.steps.append(run.steps[0])
    with pytest.raises(TypeError):
        del run.steps[0]
    with pytest.raises(ValidationError):
        run.steps = ()

    assert len(run.steps) == before

# ---------------------------------------------------------------------------
# Cancellation and faults
# ---------------------------------------------------------------------------

def test_cancelled_run_returns_partial_result():
    token = CancellationToken()
    token.request_cancel()

    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, cancel=token)

    assert run.incomplete is True
    assert run.iterations == 0
    assert run.steps[-1].type == LogType.ERROR
    assert run.conclusion == "Run stopped before any result was produced."

def test_deadline_marks_run_incomplete():
    run = SelfCallingAgent(AgentConfig()).run(RUST_GOAL, cancel=CancellationToken(timeout_s=0))
    assert run.incomplete is True
    assert "deadline" in run.steps[-1].message

def test_unexpected_error_becomes_internal_fault():
    with patch.object(HeuristicBackend, "decide", side_effect=RuntimeError("bug")):
        with pytest.raises(InternalFault, match="bug"):
            SelfCallingAgent(AgentConfig()).run("Plan a 2-day offsite")

# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------

@patch("self_calling_agent.backends.OpenAI")
def test_model_backend_used_when_key_configured(mock_openai):
    mock_openai.return_value = _model_client(
        json.dumps({"action": "decompose", "thought": "two parts", "subtasks": ["Pick venue", "Set agenda"]}),
        json.dumps({"action": "solve", "answer": "Lakeside lodge"}),
        json.dumps({"action": "solve", "answer": "Day 1 strategy, day 2 workshops"}),
        "Offsite at the lakeside lodge with strategy then workshops.",
    )
    config = AgentConfig(api_key=SecretStr("sk-test"))

    run = SelfCallingAgent(config).run("Plan a 2-day offsite", max_depth=2, max_iterations=8)

    assert run.used_model is True
    assert run.backend == "model"
    assert run.conclusion == "Offsite at the lakeside lodge with strategy then workshops."
    assert run.iterations == 4
    assert run.depth_reached == 1
    assert mock_openai.return_value.chat.completions.create.call_count == 4

@patch("self_calling_agent.backends.OpenAI")
def test_model_failures_never_abort_the_run(mock_openai):
    mock_openai.return_value = _model_client(side_effect=OpenAIError("timeout"))
    config = AgentConfig(api_key=SecretStr("sk-test"))

    run = SelfCallingAgent(config).run("Plan a 2-day offsite", max_depth=3, max_iterations=8)

    assert run.used_model is True
    assert run.incomplete is False
    assert _count(run, LogType.ERROR) == 1
    assert "placeholder" in run.conclusion

@patch("self_calling_agent.backends.OpenAI")
def test_failing_model_single_iteration_keeps_one_cycle(mock_openai):
    mock_openai.return_value = _model_client(side_effect=OpenAIError("timeout"))
    config = AgentConfig(api_key=SecretStr("sk-test"))

    run = SelfCallingAgent(config).run("Plan a 2-day offsite", 3, 1)

    core = [step.type for step in run.steps if step.type not in (LogType.GOAL, LogType.INFO)]
    assert core == [LogType.THOUGHT, LogType.ERROR, LogType.ACTION, LogType.RESULT]
    assert run.iterations == 1
    assert _count(run, LogType.THOUGHT) == 1
    assert _count(run, LogType.ACTION) == 1
    assert _count(run, LogType.RESULT) == 1

def test_blank_key_means_heuristic():
    config = AgentConfig(api_key=SecretStr("   "))
    assert SelfCallingAgent(config).run("Plan a 2-day offsite").used_model is False

# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

@patch("self_calling_agent.config.load_dotenv")
def test_run_self_calling_agent_reads_environment_at_start(mock_dotenv):
    with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
        run = run_self_calling_agent("Plan a 2-day offsite", {"maxDepth": 2, "maxIterations": 8})
    mock_dotenv.assert_called_once()
    assert run.used_model is False
    assert run.iterations <= 8

def test_run_self_calling_agent_with_explicit_config():
    run = run_self_calling_agent(RUST_GOAL, {"maxDepth": 1}, config=AgentConfig())
    assert run.depth_reached == 0
