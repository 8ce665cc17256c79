# errors.py
# Error taxonomy for the self-calling agent.
#
#   InvalidInput    rejected before planning starts (400 at the HTTP edge)
#   BackendFailure  reasoning call failed; recovered inside the planner
#   BudgetExhausted depth or iteration ceiling hit; a normal termination path
#   CancelledError  caller or deadline stopped the run; yields a partial run
#   InternalFault   unexpected failure; the run is aborted (500 at the edge)


class AgentError(Exception):
    """Base class for every error raised by the agent core."""


class InvalidInput(AgentError, ValueError):
    """Raised when the goal is missing or empty after trimming."""


class ConfigError(AgentError):
    """Raised when an environment setting cannot be parsed."""


class BackendFailure(AgentError):
    """Raised by a reasoning backend when a decide or synthesize call fails."""


class BudgetExhausted(AgentError):
    """Raised at a recursive entry whose depth or iteration ceiling is spent.

    The planner always catches this locally and records it as an info entry.
    """


class CancelledError(AgentError):
    """Raised when a cancellation request should abort the current run."""


class InternalFault(AgentError):
    """Raised when a run aborts on an unexpected error."""
