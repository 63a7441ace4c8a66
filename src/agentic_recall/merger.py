# merger.py
# Combines per-step hit lists into one ordered, deduplicated list.
#
# Dedupe key is always Hit.id (the backend's document id), never the
# projected fields.

from collections.abc import Iterable, Sequence
from typing import Callable

from agentic_recall.models import ExecutionResult, Hit


def ranked(hits: Sequence[Hit]) -> list[Hit]:
    """
    Score-descending order, stable.

    Ties keep backend order; scoreless hits (pure filter matches) follow the
    scored ones in backend order.
    """
    return sorted(hits, key=lambda h: (h.score is None, -(h.score or 0.0)))


def merge_round_robin(results: Iterable[ExecutionResult]) -> list[Hit]:
    """
    Interleave by rank: index 0 of every step in step order, then index 1, …

    Exhausted lists are skipped without leaving a gap; an id already emitted
    is not emitted again.
    """
    lists = [ranked(r.hits) for r in results]
    merged: list[Hit] = []
    seen: set[str] = set()

    depth = max((len(hits) for hits in lists), default=0)
    for rank in range(depth):
        for hits in lists:
            if rank >= len(hits):
                continue
            hit = hits[rank]
            if hit.id in seen:
                continue
            seen.add(hit.id)
            merged.append(hit)
    return merged


def merge_best_score(results: Iterable[ExecutionResult]) -> list[Hit]:
    """
    Keep the highest-scoring occurrence of each id, then sort by score.

    A score beats no score; on a tie the first occurrence (step order) wins.
    Final order is score-descending, first-seen order among equals.
    """
    best: dict[str, Hit] = {}
    for result in results:
        for hit in result.hits:
            current = best.get(hit.id)
            if current is None:
                best[hit.id] = hit
            elif hit.score is not None and (current.score is None or hit.score > current.score):
                best[hit.id] = hit
    return ranked(list(best.values()))


MERGE_POLICIES: dict[str, Callable[[Iterable[ExecutionResult]], list[Hit]]] = {
    "round_robin": merge_round_robin,
    "best_score": merge_best_score,
}


def merge(results: Iterable[ExecutionResult], policy: str = "round_robin") -> list[Hit]:
    try:
        strategy = MERGE_POLICIES[policy]
    except KeyError:
        raise ValueError(f"unknown merge policy {policy!r}") from None
    return strategy(results)
