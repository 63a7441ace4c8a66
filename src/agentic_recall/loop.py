# loop.py
# Convergence loop: the only entry point the transport layer needs.
#
# State machine:
#   PLANNING → EXECUTING → EVALUATING → DONE
#       ↑                       │
#       └───────── not covered ─┘
#   PLANNING with the iteration budget spent → GAVE_UP
#
# Oracles are advisory. Their failures are logged and absorbed here; they
# never surface to the caller.

from enum import Enum
from typing import Any, Sequence

from agentic_recall import display
from agentic_recall.backend import SearchBackend
from agentic_recall.config import Settings
from agentic_recall.executor import SearchExecutor
from agentic_recall.materializer import EmbeddingCache, QueryMaterializer
from agentic_recall.merger import merge
from agentic_recall.models import Attempt, Hit, HistoryEntry, Plan, RetrievalOutcome
from agentic_recall.oracles import CoverageOracle, Embedder, PlanOracle
from agentic_recall.planning import fallback_plan, repair_plan
from agentic_recall.scheduler import StepScheduler


class LoopState(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    DONE = "done"
    GAVE_UP = "gave_up"


class RetrievalLoop:
    """
    Plan → execute → evaluate until covered or out of iterations.

    Holds only read-only settings and collaborators; all per-request state
    (history, embedding cache, results) lives inside retrieve(), so one
    instance may serve concurrent requests.

    Example:
        loop = RetrievalLoop(settings, backend, embedder, planner, judge)
        outcome = loop.retrieve("attachments on issues about login timeouts")
        for hit in outcome.hits: ...
    """

    def __init__(
        self,
        settings: Settings,
        backend: SearchBackend,
        embedder: Embedder,
        plan_oracle: PlanOracle,
        coverage_oracle: CoverageOracle,
    ) -> None:
        self._settings = settings
        self._embedder = embedder
        self._plan_oracle = plan_oracle
        self._coverage_oracle = coverage_oracle
        self._scheduler = StepScheduler(
            settings,
            QueryMaterializer(settings, backend),
            SearchExecutor(settings, backend),
        )

    # ------------------------------------------------------------------
    # Oracle seams
    # ------------------------------------------------------------------

    def _plan(self, query: str, history: Sequence[HistoryEntry]) -> Plan:
        try:
            raw = self._plan_oracle.synthesize_plan(query, list(history))
        except Exception as exc:
            display.plan_oracle_failed(exc)
            return fallback_plan(self._settings, "plan oracle unavailable")
        return repair_plan(raw, query, self._settings)

    def _covered(self, query: str, summary: Sequence[HistoryEntry], iteration: int) -> bool:
        try:
            covered = self._coverage_oracle.evaluate(query, list(summary))
        except Exception as exc:
            display.coverage_oracle_failed(exc)
            return False
        covered = covered is True
        display.coverage_verdict(iteration, covered)
        return covered

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def _summarize(self, iteration: int, plan: Plan, attempt: Attempt) -> list[HistoryEntry]:
        field = self._settings.propagate_field
        summary: list[HistoryEntry] = []
        for step in plan.steps:
            result = attempt.results.get(step.step_id)
            hits = result.hits if result else []
            distinct = {
                value for value in (hit.source.get(field) for hit in hits)
                if value is not None and not isinstance(value, (dict, list))
            }
            summary.append(
                HistoryEntry(
                    iteration=iteration,
                    step_id=step.step_id,
                    hit_count=len(hits),
                    skipped=step.step_id in attempt.skipped,
                    distinct_values=len(distinct),
                )
            )
        return summary

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def retrieve(self, query: str) -> RetrievalOutcome:
        """
        Run the bounded loop for one request.

        Returns in all cases: `converged`, `empty` (nothing matched), or
        `gave_up` with the last attempt's hits. Raises ValueError only for a
        blank query.
        """
        if not query or not query.strip():
            raise ValueError("empty query")
        display.request_received(query)

        max_iterations = self._settings.max_iterations
        history: list[HistoryEntry] = []
        plans: list[Plan] = []
        cache = EmbeddingCache(self._embedder)

        state = LoopState.PLANNING
        iteration = 0
        plan: Plan | None = None
        summary: list[HistoryEntry] = []
        merged: list[Hit] = []
        aggregations: dict[str, dict[str, Any]] = {}
        status = "gave_up"

        while state not in (LoopState.DONE, LoopState.GAVE_UP):
            if state is LoopState.PLANNING:
                if iteration >= max_iterations:
                    state = LoopState.GAVE_UP
                    continue
                iteration += 1
                display.iteration_start(iteration, max_iterations)
                plan = self._plan(query, history)
                plans.append(plan)
                display.plan_ready(iteration, plan)
                state = LoopState.EXECUTING

            elif state is LoopState.EXECUTING:
                attempt = self._scheduler.run(plan, query, cache)
                summary = self._summarize(iteration, plan, attempt)
                history.extend(summary)
                merged = merge(attempt.results.values(), self._settings.merge_policy)
                aggregations = {
                    step_id: result.aggregations
                    for step_id, result in attempt.results.items()
                    if result.aggregations
                }
                state = LoopState.EVALUATING

            elif state is LoopState.EVALUATING:
                if all(entry.hit_count == 0 for entry in summary):
                    display.all_steps_empty(iteration)
                    status = "empty"
                    state = LoopState.DONE
                elif self._covered(query, summary, iteration):
                    status = "converged"
                    state = LoopState.DONE
                else:
                    state = LoopState.PLANNING

        if state is LoopState.GAVE_UP:
            display.gave_up(max_iterations, len(merged))

        return RetrievalOutcome(
            status=status,
            hits=merged,
            iterations=iteration,
            history=history,
            aggregations=aggregations,
            plans=plans,
        )
