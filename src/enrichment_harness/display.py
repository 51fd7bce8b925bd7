# display.py
# All terminal output for the enrichment harness.
#
# This module owns presentation entirely. harness.py never formats strings;
# it calls named methods on a RunDisplay. Each run gets its own display, so
# concurrent runs never share console state.
#
# Colour language:
#   cyan: governor / routing events
#   blue: decisions returned by the model
#   yellow: corrections and rejections
#   green: accepted results
#   red: failures and forced termination
#   magenta: action results

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from enrichment_harness.models import (
    ActionCall,
    ActionResultTurn,
    Judgment,
    Outcome,
    RunResult,
    Termination,
)


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    value = value.replace("\n", " ")
    if len(value) > max_len:
        return escape(value[:max_len]) + "…"
    return escape(value)


class RunDisplay:
    def __init__(self, console: Console | None = None, quiet: bool = False) -> None:
        self.console = console or Console(quiet=quiet)

    # ------------------------------------------------------------------
    # Run entry
    # ------------------------------------------------------------------

    def run_started(self, topic: str, model: str, max_loops: int) -> None:
        self.console.print()
        self.console.print(
            Panel.fit(
                f"[bold cyan]{escape(topic)}[/bold cyan]\n\n"
                f"[dim]Model     :[/dim] [white]{escape(model)}[/white]\n"
                f"[dim]Max loops :[/dim] [white]{max_loops}[/white]",
                title=_label("NEW RUN", "cyan"),
                border_style="cyan",
                padding=(1, 4),
            )
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decision(self, iteration: int, max_loops: int, call: ActionCall) -> None:
        self.console.print()
        self.console.print(Rule(f"[cyan]ITERATION {iteration}/{max_loops}[/cyan]", style="cyan"))
        self.console.print(
            f"  [blue]Action[/blue]   [bold white]{escape(call.name)}[/bold white]"
            f"  [dim]{_mono(json.dumps(call.arguments), 100)}[/dim]"
        )

    def protocol_violation(self, call_count: int, streak: int) -> None:
        self.console.print(
            _label("CORRECTION", "yellow"),
            f"[yellow] Model chose {call_count} actions; exactly one is required "
            f"(streak {streak}).[/yellow]",
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def action_result(self, turn: ActionResultTurn) -> None:
        if turn.outcome is Outcome.SUCCESS:
            marker = "[bold green]✓[/bold green]"
        else:
            marker = "[bold red]✗[/bold red]"
        self.console.print(
            f"  [magenta]Observe[/magenta]  {marker} [white]{escape(turn.action_name)}[/white]"
            f"  [dim]{_mono(turn.content, 140)}[/dim]"
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def candidate_invalid(self, errors: list[str]) -> None:
        self.console.print(
            Panel(
                "\n".join(f"[white]{escape(e)}[/white]" for e in errors),
                title=_label("SCHEMA CHECK ✗", "yellow"),
                border_style="yellow",
                padding=(0, 2),
            )
        )

    def judgment(self, judgment: Judgment) -> None:
        table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
        table.add_column("#", justify="center", width=4)
        table.add_column("Reason", style="white")
        for index, reason in enumerate(judgment.reasons, start=1):
            table.add_row(str(index), escape(reason))

        if judgment.is_acceptable:
            title, color = "JUDGMENT: ACCEPT ✓", "green"
        else:
            title, color = "JUDGMENT: REJECT ✗", "yellow"

        self.console.print()
        self.console.print(
            Panel(
                table,
                title=_label(title, color),
                subtitle=f"[dim]{_mono(judgment.improvement_notes or '', 80)}[/dim]",
                border_style=color,
                padding=(0, 1),
            )
        )

    def judgment_unavailable(self, reason: str) -> None:
        self.halt(f"Validation could not produce a judgment: {reason}")

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def final_result(self, result: RunResult) -> None:
        self.console.print()
        if result.terminated is Termination.ACCEPTED:
            body = json.dumps(result.record, indent=2)
            title, color = "ACCEPTED", "green"
        else:
            body = "No record was accepted within the iteration budget."
            title, color = "BUDGET EXHAUSTED", "red"
        self.console.print(
            Panel(
                f"[white]{escape(body)}[/white]",
                title=_label(title, color),
                subtitle=f"[dim]{result.iteration_count} iteration(s), "
                f"{len(result.conversation)} turn(s)[/dim]",
                border_style=color,
                padding=(1, 2),
            )
        )
        self.console.print()

    def halt(self, reason: str) -> None:
        self.console.print()
        self.console.print(
            Panel(
                f"[bold white]{escape(reason)}[/bold white]",
                title=_label("HALT", "red"),
                border_style="red",
                padding=(0, 2),
            )
        )
