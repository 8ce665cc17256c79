# display.py
# All terminal output for the self-calling agent CLI.
#
# This module owns presentation entirely. The core never formats for the
# terminal; the CLI passes step() as the trace listener and calls the
# remaining functions around a run.
#
# Colour language:
#   indigo  goal
#   cyan    thoughts and routing
#   green   actions, results, success
#   yellow  observations
#   dim     info
#   red     errors and halts

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from self_calling_agent.models import AgentLogEntry, AgentRun, Limits, LogType

console = Console()

STYLES: dict[LogType, str] = {
    LogType.GOAL: "bold slate_blue1",
    LogType.THOUGHT: "cyan",
    LogType.ACTION: "green",
    LogType.OBSERVATION: "yellow",
    LogType.RESULT: "bold green",
    LogType.INFO: "dim",
    LogType.ERROR: "bold red",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    value = " ".join(value.split())
    if len(value) > max_len:
        return escape(value[:max_len] + "…")
    return escape(value)


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(backend_label: str, limits: Limits) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Self-Calling Agent[/bold cyan]\n"
            "[dim]Recursive decompose-or-solve planning with a reasoning trace[/dim]\n\n"
            f"[dim]Reasoning  :[/dim] [white]{backend_label}[/white]\n"
            f"[dim]Max depth  :[/dim] [white]{limits.max_depth}[/white]\n"
            f"[dim]Iterations :[/dim] [white]{limits.max_iterations}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def goal_received(goal: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW RUN[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(goal)}[/white]",
            title=_label("GOAL", "slate_blue1"),
            border_style="slate_blue1",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Live trace
# ---------------------------------------------------------------------------


def step(entry: AgentLogEntry) -> None:
    """Trace listener: print one entry as it is recorded."""
    if entry.type == LogType.GOAL:
        goal_received(entry.message)
        return
    indent = "  " * (entry.depth + 1)
    style = STYLES[entry.type]
    console.print(
        f"{indent}[{style}]{entry.type.value.capitalize():<11}[/{style}] "
        f"[white]{_mono(entry.message, 140)}[/white]",
        highlight=False,
    )


# ---------------------------------------------------------------------------
# Post-run views
# ---------------------------------------------------------------------------


def trace_tree(run: AgentRun) -> Tree:
    """
    Rebuild the recursion tree from the flat trace.

    A thought opens a task node at its depth; every other entry hangs off
    the most recent task node at the same depth.
    """
    root = Tree(f"[bold slate_blue1]{_mono(run.goal, 80)}[/bold slate_blue1]")
    open_nodes: dict[int, Tree] = {-1: root}

    for entry in run.steps:
        if entry.type == LogType.GOAL:
            continue
        style = STYLES[entry.type]
        label = f"[{style}]{entry.type.value}[/{style}] {_mono(entry.message, 90)}"
        if entry.type == LogType.THOUGHT:
            parent = open_nodes.get(entry.depth - 1, root)
            open_nodes[entry.depth] = parent.add(label)
            for deeper in [depth for depth in open_nodes if depth > entry.depth]:
                del open_nodes[deeper]
        else:
            open_nodes.get(entry.depth, root).add(label)
    return root


def run_summary(run: AgentRun) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Reasoning", width=16)
    table.add_column("Iterations", justify="center", width=10)
    table.add_column("Depth", justify="center", width=6)
    table.add_column("Steps", justify="center", width=6)
    table.add_column("Duration", justify="right", width=10)
    table.add_column("Status", justify="center", width=10)

    status = "[bold red]partial[/bold red]" if run.incomplete else "[bold green]complete[/bold green]"
    table.add_row(
        "Model-assisted" if run.used_model else "Heuristic-only",
        str(run.iterations),
        str(run.depth_reached),
        str(len(run.steps)),
        f"{run.metadata.duration_ms / 1000:.2f}s",
        status,
    )

    console.print(Panel(table, title="[dim]RUN SUMMARY[/dim]", border_style="dim", padding=(0, 1)))
    console.print(Panel(trace_tree(run), title="[dim]REASONING TREE[/dim]", border_style="dim"))


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result)}[/white]",
            title=_label("CONCLUSION", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
