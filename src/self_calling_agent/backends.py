# backends.py
# Reasoning backends: the only place decisions and answers are produced.
#
# The planner sees ReasoningBackend and nothing else. One backend is chosen
# per run by the orchestrator:
#   HeuristicBackend  deterministic rules over the task text and budget
#   ModelBackend      delegates to an OpenAI-compatible chat model
#
# Backends never touch the trace. Failures surface as BackendFailure and are
# recovered by the planner.

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Literal, Optional, Sequence

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field

from self_calling_agent.cancel import CancellationToken
from self_calling_agent.config import AgentConfig
from self_calling_agent.errors import BackendFailure
from self_calling_agent.models import Decision, Decompose, Solve, Task

logger = logging.getLogger(__name__)

MAX_SUBTASKS = 5
MIN_CLAUSE_WORDS = 2
COMPLEXITY_THRESHOLD = 10


def subtask_capacity(remaining: int) -> int:
    """
    How many children a task may spawn with `remaining` iterations left
    after its own decision. One unit stays reserved for the merge.
    """
    return max(0, min(MAX_SUBTASKS, remaining - 1))


def merge_results(task: Task, results: Sequence[str]) -> str:
    """Deterministic merge of child results, in order."""
    if not results:
        return f'No subtask of "{task.description}" produced a result.'
    lines = [f'Combined result for "{task.description}":']
    for index, result in enumerate(results, start=1):
        lines.append(f"{index}. " + result.replace("\n", "\n   "))
    return "\n".join(lines)


class ReasoningBackend(ABC):
    name: str = "abstract"
    uses_model: bool = False

    @abstractmethod
    def decide(self, task: Task, remaining: int, allow_decompose: bool) -> Decision:
        """Choose between decomposing `task` and solving it outright."""

    @abstractmethod
    def synthesize(self, task: Task, results: Sequence[str]) -> str:
        """Fold ordered child results into one answer for `task`."""


# ---------------------------------------------------------------------------
# Heuristic backend
# ---------------------------------------------------------------------------

# Sequence markers always separate clauses: ';', line breaks, sentence ends, "then".
_SEQUENCE_SPLIT = re.compile(r"\s*(?:;|\n+|(?<=[.!?])\s+|,?\s+(?:and\s+)?then\s+)\s*", re.IGNORECASE)
# Coordination markers only separate clauses that stand on their own.
_COORDINATION_SPLIT = re.compile(r"\s*(?:,\s*and\s+|,\s+|\s+and\s+)", re.IGNORECASE)

# (subtask prefix, answer template) for broad single-clause tasks.
PHASES: tuple[tuple[str, str], ...] = (
    ("Define the scope for:", 'Scope for "{core}": objectives, constraints and a definition of done are set.'),
    ("Carry out:", 'Core work for "{core}" is complete and follows the agreed scope.'),
    ("Verify the outcome of:", 'Checked "{core}" against the original goal; open gaps are listed for follow-up.'),
)


def _words(text: str) -> list[str]:
    return text.split()


def _tidy(text: str) -> str:
    return " ".join(text.split()).strip(" .,;")


def _sentence_case(text: str) -> str:
    return text[:1].upper() + text[1:]


def split_clauses(text: str) -> list[str]:
    """
    Break task text into coordinated sub-goals.

    Fragments shorter than MIN_CLAUSE_WORDS are glued back onto their
    neighbour, so "research and outline X" stays one clause while
    "book flights, reserve a hotel" becomes two.
    """
    clauses: list[str] = []
    for sentence in _SEQUENCE_SPLIT.split(text):
        parts = [_tidy(part) for part in _COORDINATION_SPLIT.split(sentence)]
        merged: list[str] = []
        for part in parts:
            if not part:
                continue
            if merged and (
                len(_words(part)) < MIN_CLAUSE_WORDS or len(_words(merged[-1])) < MIN_CLAUSE_WORDS
            ):
                merged[-1] = f"{merged[-1]} and {part}"
            else:
                merged.append(part)
        clauses.extend(merged)
    return clauses


def _phase_of(text: str) -> Optional[tuple[str, str]]:
    for prefix, template in PHASES:
        if text.lower().startswith(prefix.lower() + " "):
            return prefix, template
    return None


class HeuristicBackend(ReasoningBackend):
    """
    Rule-based backend used when no model is configured.

    Decompose when the text holds two or more coordinated clauses, or when a
    single clause runs to COMPLEXITY_THRESHOLD words or more (split into
    scope / execution / verification phases). Phase subtasks are atomic.
    Everything else is solved directly. Same input, same output.
    """

    name = "heuristic"
    uses_model = False

    def decide(self, task: Task, remaining: int, allow_decompose: bool) -> Decision:
        text = _tidy(task.description)
        if not allow_decompose:
            return Solve(
                answer=self._answer(text, task.context),
                thought=f'Depth or iteration limit reached at depth {task.depth}; solving "{text}" directly.',
            )

        capacity = subtask_capacity(remaining)
        if _phase_of(text) is None:
            clauses = split_clauses(text)
            if len(clauses) >= 2 and capacity >= 2:
                if len(clauses) > capacity:
                    clauses = clauses[: capacity - 1] + [" and ".join(clauses[capacity - 1 :])]
                return Decompose(
                    subtasks=[_sentence_case(clause) for clause in clauses],
                    thought=f'"{text}" combines {len(clauses)} sub-goals; handling them in order.',
                )

            word_count = len(_words(text))
            if word_count >= COMPLEXITY_THRESHOLD and capacity >= len(PHASES):
                return Decompose(
                    subtasks=[f"{prefix} {text}" for prefix, _ in PHASES],
                    thought=(
                        f'"{text}" is broad ({word_count} words); '
                        "splitting it into scope, execution and verification."
                    ),
                )

        return Solve(
            answer=self._answer(text, task.context),
            thought=f'"{text}" is a single concrete step; solving directly.',
        )

    def synthesize(self, task: Task, results: Sequence[str]) -> str:
        return merge_results(task, results)

    @staticmethod
    def _answer(text: str, context: Sequence[str]) -> str:
        phase = _phase_of(text)
        if phase is not None:
            prefix, template = phase
            answer = template.format(core=text[len(prefix) :].strip())
        else:
            answer = f'Addressed "{text}" directly as a single focused step.'
        if context:
            plural = "s" if len(context) != 1 else ""
            answer += f" Builds on {len(context)} earlier result{plural}."
        return answer


# ---------------------------------------------------------------------------
# Model-assisted backend
# ---------------------------------------------------------------------------

DECIDE_SYSTEM_PROMPT = """\
You are the planning core of a recursive problem-solving agent.

For the task you receive, decide whether to split it into smaller subtasks or to
solve it directly. Respond with ONLY one JSON object, in one of these two shapes:

{"action": "decompose", "thought": "<short reasoning>", "subtasks": ["<subtask>", "<subtask>"]}
{"action": "solve", "thought": "<short reasoning>", "answer": "<complete answer to the task>"}

Rules:
- Decompose only when the task genuinely contains several distinct sub-goals.
- Subtasks must be ordered, concrete and understandable without the parent task.
- Never list more subtasks than the limit you are given.
- When decomposition is not allowed you MUST solve.\
"""

SYNTHESIZE_SYSTEM_PROMPT = """\
You are the synthesis step of a recursive problem-solving agent.

You receive a task and the ordered results of the subtasks it was split into.
Combine them into one coherent, complete answer to the task. Respond with the
answer text only, no preamble.\
"""


class _ModelDecision(BaseModel):
    action: Literal["decompose", "solve"]
    thought: str = ""
    subtasks: list[str] = Field(default_factory=list)
    answer: str = ""


def parse_decision(response: str) -> Decision:
    """
    Extract and validate the decision JSON from a model reply.
    Raises BackendFailure if it is missing or malformed.
    """
    start = response.find("{")
    end = response.rfind("}")
    if start == -1 or end <= start:
        raise BackendFailure("Model reply contained no JSON object.")

    try:
        parsed = _ModelDecision.model_validate(json.loads(response[start : end + 1], strict=False))
    except (json.JSONDecodeError, ValueError) as exc:
        raise BackendFailure(f"Model decision is invalid: {exc}") from exc

    if parsed.action == "decompose":
        subtasks = [item.strip() for item in parsed.subtasks if item.strip()]
        if not subtasks:
            raise BackendFailure("Model chose to decompose but listed no subtasks.")
        return Decompose(subtasks=subtasks, thought=parsed.thought.strip())

    answer = parsed.answer.strip()
    if not answer:
        raise BackendFailure("Model chose to solve but gave no answer.")
    return Solve(answer=answer, thought=parsed.thought.strip())


def _decide_prompt(task: Task, remaining: int, allow_decompose: bool) -> str:
    lines = [f"Overall goal: {task.root.description}"]
    if task.parent is not None:
        lines.append(f"Parent task: {task.parent.description}")
    lines.append(f"Current task (depth {task.depth}): {task.description}")
    if task.context:
        lines.append("")
        lines.append("Results of earlier sibling subtasks:")
        lines.extend(f"{index}. {result}" for index, result in enumerate(task.context, start=1))
    lines.append("")
    lines.append(f"Remaining iteration budget: {remaining}")
    if allow_decompose:
        lines.append(f"Decomposition allowed: yes, at most {subtask_capacity(remaining)} subtasks.")
    else:
        lines.append("Decomposition allowed: no, you must solve.")
    return "\n".join(lines)


def _synthesize_prompt(task: Task, results: Sequence[str]) -> str:
    lines = [f"Task: {task.description}", "", "Subtask results:"]
    lines.extend(f"{index}. {result}" for index, result in enumerate(results, start=1))
    return "\n".join(lines)


class ModelBackend(ReasoningBackend):
    """
    Backend that asks an OpenAI-compatible chat model for every decision.

    Example:
        backend = ModelBackend.from_config(AgentConfig.from_env())
        decision = backend.decide(Task(description="Plan a launch"), 8, True)
    """

    name = "model"
    uses_model = True

    def __init__(
        self,
        client: OpenAI,
        model: str,
        temperature: float = 0.2,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature
        self._cancel = cancel

    @classmethod
    def from_config(cls, config: AgentConfig, cancel: Optional[CancellationToken] = None) -> "ModelBackend":
        if config.api_key is None:
            raise BackendFailure("No API key configured for the model-assisted backend.")
        client = OpenAI(
            base_url=config.base_url,
            api_key=config.api_key.get_secret_value(),
            timeout=config.timeout_s,
            max_retries=1,
        )
        return cls(client, config.model, temperature=config.temperature, cancel=cancel)

    # ------------------------------------------------------------------
    # Low-level model call
    # ------------------------------------------------------------------

    def _complete(self, system: str, user: str) -> str:
        if self._cancel is not None:
            self._cancel.raise_if_cancelled()

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self._temperature,
            )
            content = response.choices[0].message.content
        except (OpenAIError, IndexError, AttributeError) as exc:
            logger.warning("Reasoning call to %s failed: %s", self._model, exc)
            raise BackendFailure(f"Reasoning call failed: {exc}") from exc

        if self._cancel is not None:
            self._cancel.raise_if_cancelled()
        if not content or not content.strip():
            raise BackendFailure("Reasoning call returned an empty reply.")
        return content.strip()

    # ------------------------------------------------------------------
    # ReasoningBackend
    # ------------------------------------------------------------------

    def decide(self, task: Task, remaining: int, allow_decompose: bool) -> Decision:
        response = self._complete(DECIDE_SYSTEM_PROMPT, _decide_prompt(task, remaining, allow_decompose))
        return parse_decision(response)

    def synthesize(self, task: Task, results: Sequence[str]) -> str:
        return self._complete(SYNTHESIZE_SYSTEM_PROMPT, _synthesize_prompt(task, results))
