# display.py
# All log events and terminal output for the retrieval engine.
#
# This module owns presentation entirely. The engine never formats log
# strings; it calls named functions here. Library use gets plain `logging`
# records under the "agentic_recall" logger; the CLI additionally installs a
# RichHandler and renders tables.
#
# Colour language (CLI only):
#   cyan: planning / routing
#   yellow: repairs, demotions, partial results
#   green: converged
#   red: gave up, failures

import json
import logging
from typing import Any

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from agentic_recall.models import HistoryEntry, Plan, RetrievalOutcome

logger = logging.getLogger("agentic_recall")
console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def configure_logging(level: int | str = logging.INFO) -> None:
    """Route engine logs through rich. Safe to call more than once."""
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=True))
    logger.setLevel(level)
    logger.propagate = False


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _dump(body: Any) -> str:
    return json.dumps(body, default=str, sort_keys=True)


# ---------------------------------------------------------------------------
# Convergence loop
# ---------------------------------------------------------------------------


def request_received(query: str) -> None:
    logger.info("retrieve: %s", _mono(query))


def iteration_start(iteration: int, max_iterations: int) -> None:
    logger.info("iteration %d/%d: planning", iteration, max_iterations)


def plan_oracle_failed(error: Exception) -> None:
    logger.warning("plan oracle failed (%s); using fallback plan", error)


def coverage_oracle_failed(error: Exception) -> None:
    logger.warning("coverage oracle failed (%s); treating as not covered", error)


def coverage_verdict(iteration: int, covered: bool) -> None:
    logger.info("iteration %d: coverage %s", iteration, "satisfied" if covered else "not satisfied")


def all_steps_empty(iteration: int) -> None:
    logger.info("iteration %d: every step returned zero hits; stopping", iteration)


def gave_up(max_iterations: int, hit_count: int) -> None:
    logger.warning(
        "gave up after %d iterations; returning %d hits from the last attempt",
        max_iterations,
        hit_count,
    )


# ---------------------------------------------------------------------------
# Plan repair
# ---------------------------------------------------------------------------


def plan_fallback(reason: str) -> None:
    logger.warning("plan unusable (%s); substituting semantic fallback", reason)


def plan_truncated(original: int, kept: int) -> None:
    logger.warning("plan has %d steps; keeping the first %d", original, kept)


def step_dropped(index: int, reason: str) -> None:
    logger.warning("plan entry %d dropped: %s", index, reason)


def step_renamed(old: str | None, new: str) -> None:
    logger.debug("step id %r rewritten to %r", old, new)


def template_synthesized(step_id: str, kind: str) -> None:
    logger.warning("%s has no query body; synthesized %s fallback", step_id, kind)


def semantic_step_added(step_id: str) -> None:
    logger.info("plan has no embedding step; prepended %s", step_id)


def plan_ready(iteration: int, plan: Plan) -> None:
    logger.debug("iteration %d plan: %s", iteration, _dump(plan.model_dump()))


# ---------------------------------------------------------------------------
# Materialization
# ---------------------------------------------------------------------------


def embedding_computed(text: str, dim: int) -> None:
    logger.debug("embedded %r (%d dims)", _mono(text, 60), dim)


def unknown_field(step_id: str, field: str) -> None:
    logger.warning("%s references unknown field %r; demoted to semantic recall", step_id, field)


def ids_inlined(step_id: str, field: str, count: int) -> None:
    logger.debug("%s: %d %s values inlined", step_id, count, field)


def ids_indirected(step_id: str, field: str, count: int, doc_id: str) -> None:
    logger.info("%s: %d %s values stored as lookup document %s", step_id, count, field, doc_id)


def request_materialized(step_id: str, body: dict) -> None:
    logger.debug("%s request: %s", step_id, _mono(_dump(body), 2000))


# ---------------------------------------------------------------------------
# Scheduling and execution
# ---------------------------------------------------------------------------


def step_skipped(step_id: str, reason: str) -> None:
    logger.warning("%s skipped: %s", step_id, reason)


def step_failed(step_id: str, error: Exception) -> None:
    logger.error("%s failed: %s", step_id, error, exc_info=error)


def step_done(step_id: str, hit_count: int, partial: bool) -> None:
    suffix = " (partial)" if partial else ""
    logger.info("%s: %d hits%s", step_id, hit_count, suffix)


def search_failed(step_id: str, error: Exception) -> None:
    logger.error("%s search failed: %s", step_id, error)


def cursor_interrupted(step_id: str, error: Exception, collected: int) -> None:
    logger.warning("%s cursor lost after %d hits: %s", step_id, collected, error)


def cursor_release_failed(error: Exception) -> None:
    logger.warning("cursor release failed: %s", error)


def hits_below_threshold(step_id: str, dropped: int, threshold: float) -> None:
    logger.debug("%s: dropped %d hits scoring below %s", step_id, dropped, threshold)


# ---------------------------------------------------------------------------
# CLI rendering
# ---------------------------------------------------------------------------


def plan_table(plan: Plan) -> None:
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("Step", style="bold white", width=18)
    table.add_column("Embed", justify="center", width=6)
    table.add_column("Depends on", width=18)
    table.add_column("Purpose", style="white")

    for step in plan.steps:
        table.add_row(
            step.step_id,
            "✓" if step.requires_embedding else "",
            ", ".join(step.depends_on),
            _mono(step.purpose, 60),
        )

    title = "PLAN (fallback)" if plan.fallback else "PLAN"
    console.print(Panel(table, title=_label(title, "cyan"), border_style="cyan", padding=(0, 1)))


def history_table(history: list[HistoryEntry]) -> None:
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("Iter", justify="center", width=5)
    table.add_column("Step", width=20)
    table.add_column("Hits", justify="right", width=8)
    table.add_column("Distinct", justify="right", width=9)
    table.add_column("Skipped", justify="center", width=8)

    for entry in history:
        table.add_row(
            str(entry.iteration),
            entry.step_id,
            str(entry.hit_count),
            str(entry.distinct_values),
            "[yellow]yes[/yellow]" if entry.skipped else "",
        )

    console.print(Panel(table, title="[dim]HISTORY[/dim]", border_style="dim", padding=(0, 1)))


def outcome(result: RetrievalOutcome, limit: int = 20) -> None:
    color = {"converged": "green", "empty": "yellow", "gave_up": "red"}[result.status]
    console.print()
    console.print(
        Rule(f"[{color}]{result.status.upper()} after {result.iterations} iteration(s)[/{color}]", style=color)
    )

    table = Table(box=box.SIMPLE_HEAVY, show_header=True, header_style=f"bold {color}", padding=(0, 1))
    table.add_column("#", justify="right", width=4)
    table.add_column("Id", width=24)
    table.add_column("Score", justify="right", width=8)
    table.add_column("Source", style="dim white")

    for rank, hit in enumerate(result.hits[:limit], start=1):
        score = "" if hit.score is None else f"{hit.score:.3f}"
        table.add_row(str(rank), hit.id, score, _mono(_dump(hit.source), 80))

    console.print(
        Panel(
            table,
            title=_label(f"{len(result.hits)} HITS", color),
            subtitle=f"[dim]showing {min(limit, len(result.hits))}[/dim]",
            border_style=color,
            padding=(0, 1),
        )
    )
