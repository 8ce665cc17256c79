# api.py
# Transport-neutral request handler for the agent endpoint.
#
# Marshals a decoded JSON body into a run and returns (status, body) using
# the endpoint's contract:
#   200 {"status": "ok", "run": {...}}
#   400 {"message": "Goal is required"}
#   500 {"message": "<error>"}
# Any web framework can wrap this; none is imported here.
# Limit values pass through untouched; Limits.normalize coerces them.

import logging
from typing import Any, Optional

from self_calling_agent.agent import SelfCallingAgent
from self_calling_agent.cancel import CancellationToken
from self_calling_agent.config import AgentConfig
from self_calling_agent.errors import InvalidInput

logger = logging.getLogger(__name__)


def handle_agent_request(
    payload: Any,
    *,
    agent: Optional[SelfCallingAgent] = None,
    cancel: Optional[CancellationToken] = None,
) -> tuple[int, dict[str, Any]]:
    body = payload if isinstance(payload, dict) else {}
    goal = body.get("goal")
    goal = goal.strip() if isinstance(goal, str) else ""
    if not goal:
        return 400, {"message": "Goal is required"}

    try:
        agent = agent or SelfCallingAgent(AgentConfig.from_env())
        run = agent.run(
            goal,
            body.get("maxDepth"),
            body.get("maxIterations"),
            cancel=cancel,
        )
    except InvalidInput as exc:
        return 400, {"message": str(exc)}
    except Exception as exc:
        logger.exception("Agent request failed")
        return 500, {"message": str(exc) or "Unknown error"}

    return 200, {"status": "ok", "run": run.to_json_dict()}
