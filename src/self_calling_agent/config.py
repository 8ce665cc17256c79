# config.py
# Runtime configuration, resolved once at the process edge.
#
# The orchestrator receives an AgentConfig explicitly; nothing below it reads
# the environment. An absent API key is not an error: it selects the
# heuristic backend.

import math
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from self_calling_agent.errors import ConfigError
from self_calling_agent.models import DEFAULT_MAX_DEPTH, DEFAULT_MAX_ITERATIONS

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_S = 30.0


def _first(environ: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return None


def _as_float(value: Optional[str], *, key: str, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from exc
    if not math.isfinite(number) or number <= 0:
        raise ConfigError(f"{key} must be positive, got {value!r}")
    return number


class AgentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: Optional[SecretStr] = Field(default=None, description="Enables the model-assisted backend.")
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout_s: float = Field(default=DEFAULT_TIMEOUT_S, gt=0, description="Per external call.")
    temperature: float = Field(default=0.2, ge=0, le=2)
    default_max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1)
    default_max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)

    @property
    def has_model_capability(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value().strip())

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """
        Build a config from environment variables.

        When no mapping is given, a local .env file is loaded first (without
        overriding variables that are already set) and os.environ is read.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        api_key = _first(environ, "OPENAI_API_KEY")
        return cls(
            api_key=SecretStr(api_key) if api_key else None,
            base_url=_first(environ, "OPENAI_BASE_URL", "OPENAI_API_BASE") or DEFAULT_BASE_URL,
            model=_first(environ, "SELF_CALLING_AGENT_MODEL", "OPENAI_MODEL") or DEFAULT_MODEL,
            timeout_s=_as_float(
                _first(environ, "SELF_CALLING_AGENT_TIMEOUT"),
                key="SELF_CALLING_AGENT_TIMEOUT",
                default=DEFAULT_TIMEOUT_S,
            ),
        )
