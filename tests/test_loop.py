from unittest.mock import MagicMock

import pytest

from conftest import FakeBackend, FakeEmbedder, raw_hit

from agentic_recall.config import Settings
from agentic_recall.errors import OracleError
from agentic_recall.loop import RetrievalLoop

MATCH_ALL = {"query": {"match_all": {}}}
ONE_STEP = [{"step_id": "a", "purpose": "everything", "query_body": MATCH_ALL}]


def _one_page(body):
    return [[raw_hit("d1", 0.9, issue_id=1), raw_hit("d2", 0.8, issue_id=1), raw_hit("d3", 0.7, issue_id=2)]]


def _loop(settings, backend, plan=ONE_STEP, covered=False, embedder=None):
    planner = MagicMock()
    planner.synthesize_plan.return_value = plan
    judge = MagicMock()
    if isinstance(covered, list):
        judge.evaluate.side_effect = covered
    else:
        judge.evaluate.return_value = covered
    loop = RetrievalLoop(settings, backend, embedder or FakeEmbedder(), planner, judge)
    return loop, planner, judge


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------


def test_never_covered_stops_at_iteration_bound(settings):
    loop, planner, judge = _loop(settings, FakeBackend(_one_page), covered=False)

    outcome = loop.retrieve("login timeouts")

    assert outcome.status == "gave_up"
    assert outcome.gave_up is True
    assert planner.synthesize_plan.call_count == settings.max_iterations
    assert judge.evaluate.call_count == settings.max_iterations
    assert outcome.iterations == settings.max_iterations
    assert len(outcome.plans) == settings.max_iterations
    # last attempt's hits are still handed back
    assert [h.id for h in outcome.hits] == ["d1", "d2", "d3"]


def test_covered_on_second_iteration_converges(settings):
    loop, planner, _ = _loop(settings, FakeBackend(_one_page), covered=[False, True])

    outcome = loop.retrieve("login timeouts")

    assert outcome.status == "converged"
    assert outcome.iterations == 2
    assert planner.synthesize_plan.call_count == 2


def test_all_empty_short_circuits_without_coverage_call(settings):
    loop, _, judge = _loop(settings, FakeBackend(lambda body: []))

    outcome = loop.retrieve("nothing matches")

    assert outcome.status == "empty"
    assert outcome.iterations == 1
    assert outcome.hits == []
    judge.evaluate.assert_not_called()


def test_blank_query_is_rejected(settings):
    loop, planner, _ = _loop(settings, FakeBackend(_one_page))
    with pytest.raises(ValueError):
        loop.retrieve("   ")
    planner.synthesize_plan.assert_not_called()


# ---------------------------------------------------------------------------
# Oracle failures
# ---------------------------------------------------------------------------


def test_plan_oracle_failure_uses_semantic_fallback(settings):
    embedder = FakeEmbedder()
    backend = FakeBackend(_one_page)
    loop, planner, _ = _loop(settings, backend, covered=True, embedder=embedder)
    planner.synthesize_plan.side_effect = OracleError("rate limited")

    outcome = loop.retrieve("login timeouts")

    assert outcome.status == "converged"
    assert outcome.plans[0].fallback is True
    assert embedder.calls == ["login timeouts"]
    assert "knn" in backend.searches[0]["query"]


def test_coverage_oracle_failure_keeps_iterating():
    settings = Settings(embed_dim=4, max_iterations=3)
    loop, planner, judge = _loop(settings, FakeBackend(_one_page))
    judge.evaluate.side_effect = OracleError("malformed verdict")

    outcome = loop.retrieve("login timeouts")

    assert outcome.status == "gave_up"
    assert planner.synthesize_plan.call_count == 3


def test_garbage_plan_is_repaired_not_raised(settings):
    loop, _, _ = _loop(settings, FakeBackend(_one_page), plan="definitely not a plan", covered=True)

    outcome = loop.retrieve("login timeouts")

    assert outcome.status == "converged"
    assert outcome.plans[0].fallback is True


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def test_history_records_counts_skips_and_distinct_values(settings):
    plan = ONE_STEP + [{"step_id": "b", "depends_on": ["ghost"], "query_body": MATCH_ALL}]
    loop, _, _ = _loop(settings, FakeBackend(_one_page), plan=plan, covered=True)

    outcome = loop.retrieve("login timeouts")

    a, b = outcome.history
    assert (a.iteration, a.step_id, a.hit_count, a.skipped, a.distinct_values) == (1, "a", 3, False, 2)
    assert (b.step_id, b.hit_count, b.skipped) == ("b", 0, True)


def test_planner_sees_previous_iterations(settings):
    loop, planner, _ = _loop(settings, FakeBackend(_one_page), covered=[False, True])

    loop.retrieve("login timeouts")

    first_history = planner.synthesize_plan.call_args_list[0].args[1]
    second_history = planner.synthesize_plan.call_args_list[1].args[1]
    assert first_history == []
    assert [e.iteration for e in second_history] == [1]


def test_query_is_embedded_once_per_request(settings):
    embedder = FakeEmbedder()
    knn_plan = [
        {"step_id": "sem", "query_body": {"query": {"knn": {"embedding": {"vector": [], "k": 5}}}}},
    ]
    loop, _, _ = _loop(settings, FakeBackend(_one_page), plan=knn_plan, covered=[False, False, True], embedder=embedder)

    outcome = loop.retrieve("login timeouts")

    assert outcome.iterations == 3
    assert embedder.calls == ["login timeouts"]
