# run.py
# Command-line entry point. Config and wiring only; no logic lives here.
#
#   self-calling-agent "Plan a 2-day offsite" --max-depth 2 --max-iterations 8
#
# Set OPENAI_API_KEY (environment or .env) for model-assisted reasoning;
# without it the deterministic heuristic backend is used.

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler

from self_calling_agent import display
from self_calling_agent.agent import SelfCallingAgent
from self_calling_agent.api import handle_agent_request
from self_calling_agent.cancel import CancellationToken
from self_calling_agent.config import AgentConfig
from self_calling_agent.errors import ConfigError, InternalFault, InvalidInput
from self_calling_agent.models import Limits

EXIT_OK = 0
EXIT_FAULT = 1
EXIT_INVALID = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="self-calling-agent",
        description="Recursively decompose a goal into subtasks, solve them and synthesize a conclusion.",
    )
    parser.add_argument("goal", help="Natural-language goal for the agent.")
    parser.add_argument("--max-depth", type=float, default=None, help="Maximum recursion depth (1-6, default 3).")
    parser.add_argument(
        "--max-iterations", type=float, default=None, help="Maximum reasoning cycles (1-32, default 12)."
    )
    parser.add_argument("--timeout", type=float, default=None, help="Stop the run after this many seconds.")
    parser.add_argument("--json", action="store_true", help="Print the {status, run} JSON envelope only.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        agent = SelfCallingAgent(AgentConfig.from_env())
    except ConfigError as exc:
        display.halt(str(exc))
        return EXIT_INVALID

    cancel = CancellationToken(timeout_s=args.timeout)

    if args.json:
        status, body = handle_agent_request(
            {"goal": args.goal, "maxDepth": args.max_depth, "maxIterations": args.max_iterations},
            agent=agent,
            cancel=cancel,
        )
        print(json.dumps(body, indent=2, ensure_ascii=False))
        if status == 200:
            return EXIT_OK
        return EXIT_INVALID if status == 400 else EXIT_FAULT

    limits = Limits.normalize(
        args.max_depth,
        args.max_iterations,
        default_depth=agent.config.default_max_depth,
        default_iterations=agent.config.default_max_iterations,
    )
    display.banner(
        f"model-assisted ({agent.config.model})" if agent.config.has_model_capability else "heuristic-only",
        limits,
    )

    try:
        run = agent.run(
            args.goal,
            limits.max_depth,
            limits.max_iterations,
            cancel=cancel,
            listener=display.step,
        )
    except InvalidInput as exc:
        display.halt(str(exc))
        return EXIT_INVALID
    except InternalFault as exc:
        display.halt(str(exc))
        return EXIT_FAULT

    display.run_summary(run)
    display.final_result(run.conclusion)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
