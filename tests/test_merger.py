import pytest

from agentic_recall.merger import merge, merge_best_score, merge_round_robin, ranked
from agentic_recall.models import ExecutionResult, Hit


def _hit(doc_id, score=None):
    return Hit(id=doc_id, score=score)


def _result(step_id, *hits):
    return ExecutionResult(step_id=step_id, hits=list(hits))


def _ids(hits):
    return [h.id for h in hits]


def test_round_robin_interleaves_by_rank():
    a = _result("a", _hit("a1", 0.9), _hit("a2", 0.5))
    b = _result("b", _hit("b1", 0.8))

    assert _ids(merge_round_robin([a, b])) == ["a1", "b1", "a2"]


def test_round_robin_drops_repeated_ids():
    a = _result("a", _hit("x", 0.9), _hit("y", 0.4))
    b = _result("b", _hit("y", 0.95), _hit("x", 0.2), _hit("z", 0.1))

    merged = merge_round_robin([a, b])

    assert _ids(merged) == ["x", "y", "z"]
    assert len(merged) == len(set(_ids(merged)))


def test_round_robin_is_idempotent():
    a = _result("a", _hit("a1", 0.9), _hit("shared", 0.5))
    b = _result("b", _hit("shared", 0.7), _hit("b2", 0.3))

    once = merge_round_robin([a, b])
    twice = merge_round_robin([_result("merged", *once)])

    assert _ids(twice) == _ids(once)


def test_best_score_keeps_highest_occurrence():
    a = _result("a", _hit("x", 0.2), _hit("y", None))
    b = _result("b", _hit("x", 0.9), _hit("y", 0.1), _hit("z", 0.5))

    merged = merge_best_score([a, b])

    assert _ids(merged) == ["x", "z", "y"]
    assert merged[0].score == 0.9
    assert merged[2].score == 0.1


def test_ranked_is_stable_and_puts_unscored_last():
    hits = [_hit("n1"), _hit("t1", 0.5), _hit("hi", 0.9), _hit("t2", 0.5), _hit("n2")]
    assert _ids(ranked(hits)) == ["hi", "t1", "t2", "n1", "n2"]


def test_empty_inputs_merge_to_nothing():
    assert merge([], "round_robin") == []
    assert merge([_result("a")], "best_score") == []


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        merge([], "shuffle")
