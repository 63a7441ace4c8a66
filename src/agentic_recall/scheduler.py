# scheduler.py
# Dependency-aware execution of a repaired Plan.
#
# A step runs only when every declared dependency has a result in this
# attempt; otherwise it is skipped and contributes zero hits. With
# max_workers == 1 steps run one at a time in plan order. With more
# workers, steps are grouped into dependency waves and each wave runs on
# a thread pool. Results are always reported in plan order.

from concurrent.futures import ThreadPoolExecutor
from typing import Mapping

from agentic_recall import display
from agentic_recall.config import Settings
from agentic_recall.errors import MaterializationError
from agentic_recall.executor import SearchExecutor
from agentic_recall.materializer import EmbeddingCache, QueryMaterializer
from agentic_recall.models import Attempt, ExecutionResult, Plan, Step


class _Skip:
    def __init__(self, reason: str) -> None:
        self.reason = reason


class _Failure:
    def __init__(self, error: str) -> None:
        self.error = error


def dependency_waves(plan: Plan) -> list[list[Step]]:
    """
    Group steps so each wave depends only on earlier waves.

    Dependencies that do not name an earlier step are ignored for grouping;
    the scheduler skips such steps when they come up.
    """
    level: dict[str, int] = {}
    waves: list[list[Step]] = []
    for step in plan.steps:
        earlier = [level[d] for d in step.depends_on if d in level]
        wave = max(earlier) + 1 if earlier else 0
        level[step.step_id] = wave
        while len(waves) <= wave:
            waves.append([])
        waves[wave].append(step)
    return waves


class StepScheduler:
    """Runs one attempt: materialize → execute for every step in the plan."""

    def __init__(
        self,
        settings: Settings,
        materializer: QueryMaterializer,
        executor: SearchExecutor,
    ) -> None:
        self._settings = settings
        self._materializer = materializer
        self._executor = executor

    def run(self, plan: Plan, query: str, cache: EmbeddingCache) -> Attempt:
        outcomes: dict[str, ExecutionResult | _Skip | _Failure] = {}
        results: dict[str, ExecutionResult] = {}

        if self._settings.max_workers == 1:
            waves = [[step] for step in plan.steps]
        else:
            waves = dependency_waves(plan)

        for wave in waves:
            if len(wave) == 1:
                step = wave[0]
                outcome = self._run_step(step, query, cache, results)
                outcomes[step.step_id] = outcome
                if isinstance(outcome, ExecutionResult):
                    results[step.step_id] = outcome
                continue

            # Steps inside a wave never read each other's results.
            workers = min(self._settings.max_workers, len(wave))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recall-step") as pool:
                futures = [pool.submit(self._run_step, step, query, cache, dict(results)) for step in wave]
                wave_outcomes = [future.result() for future in futures]
            for step, outcome in zip(wave, wave_outcomes):
                outcomes[step.step_id] = outcome
                if isinstance(outcome, ExecutionResult):
                    results[step.step_id] = outcome

        attempt = Attempt()
        for step in plan.steps:
            outcome = outcomes[step.step_id]
            if isinstance(outcome, ExecutionResult):
                attempt.results[step.step_id] = outcome
            elif isinstance(outcome, _Skip):
                attempt.skipped[step.step_id] = outcome.reason
            else:
                attempt.failed[step.step_id] = outcome.error
        return attempt

    def _run_step(
        self,
        step: Step,
        query: str,
        cache: EmbeddingCache,
        results: Mapping[str, ExecutionResult],
    ) -> ExecutionResult | _Skip | _Failure:
        missing = [d for d in step.depends_on if d not in results]
        if missing:
            reason = f"dependency {', '.join(missing)} produced no result"
            display.step_skipped(step.step_id, reason)
            return _Skip(reason)

        try:
            body = self._materializer.materialize(step, query, cache, results)
        except MaterializationError as exc:
            display.step_skipped(step.step_id, exc.reason)
            return _Skip(exc.reason)
        except Exception as exc:  # one step must not take its siblings down
            display.step_failed(step.step_id, exc)
            return _Failure(str(exc))

        try:
            result = self._executor.run(step.step_id, step.purpose, body)
        except Exception as exc:
            display.step_failed(step.step_id, exc)
            return _Failure(str(exc))

        if result.error is not None:
            return _Failure(result.error)
        display.step_done(step.step_id, len(result.hits), result.partial)
        return result
