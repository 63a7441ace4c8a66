# executor.py
# Exhaustive execution of one materialized request.
#
# Protocol:
#   search(scroll=ttl) → scroll(id) … until an empty batch → clear_scroll
#
# Cursor ids are released on every exit path, including exceptions raised
# by the caller's thread (KeyboardInterrupt during a long scroll).

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from agentic_recall import display
from agentic_recall.backend import SearchBackend
from agentic_recall.config import Settings
from agentic_recall.errors import BackendError
from agentic_recall.models import ExecutionResult, Hit


def _batch(response: dict[str, Any]) -> list[dict[str, Any]]:
    return list((response.get("hits") or {}).get("hits") or [])


def _to_hit(raw: dict[str, Any]) -> Hit:
    return Hit(id=str(raw["_id"]), score=raw.get("_score"), source=raw.get("_source") or {})


class SearchExecutor:
    """Runs requests to completion against a SearchBackend."""

    def __init__(self, settings: Settings, backend: SearchBackend) -> None:
        self._settings = settings
        self._backend = backend

    @contextmanager
    def _cursor(self) -> Iterator[list[str]]:
        """Collects every scroll id handed out and releases them on exit."""
        scroll_ids: list[str] = []
        try:
            yield scroll_ids
        finally:
            if scroll_ids:
                try:
                    self._backend.clear_scroll(scroll_ids)
                except BackendError as exc:
                    display.cursor_release_failed(exc)

    def run(self, step_id: str, purpose: str, body: dict[str, Any]) -> ExecutionResult:
        """
        Fetch every page for `body`.

        Initial failure → empty result with `error` set.
        Failure mid-scroll → the pages collected so far, `partial=True`.
        """
        ttl = self._settings.cursor_ttl
        timeout = float(self._settings.cursor_ttl_seconds)
        raw_hits: list[dict[str, Any]] = []
        partial = False

        with self._cursor() as scroll_ids:
            try:
                response = self._backend.search(body, scroll=ttl, timeout=timeout)
            except BackendError as exc:
                display.search_failed(step_id, exc)
                return ExecutionResult(step_id=step_id, purpose=purpose, error=str(exc))

            aggregations = response.get("aggregations")
            scroll_id = response.get("_scroll_id")
            batch = _batch(response)
            raw_hits.extend(batch)

            while scroll_id and batch:
                if scroll_id not in scroll_ids:
                    scroll_ids.append(scroll_id)
                try:
                    response = self._backend.scroll(scroll_id, scroll=ttl, timeout=timeout)
                except BackendError as exc:
                    display.cursor_interrupted(step_id, exc, len(raw_hits))
                    partial = True
                    break
                scroll_id = response.get("_scroll_id") or scroll_id
                batch = _batch(response)
                raw_hits.extend(batch)

            if scroll_id and scroll_id not in scroll_ids:
                scroll_ids.append(scroll_id)

        hits = self._above_threshold(step_id, [_to_hit(raw) for raw in raw_hits])
        return ExecutionResult(
            step_id=step_id,
            purpose=purpose,
            hits=hits,
            aggregations=aggregations,
            partial=partial,
        )

    def _above_threshold(self, step_id: str, hits: list[Hit]) -> list[Hit]:
        threshold = self._settings.min_score
        if threshold is None:
            return hits
        kept = [h for h in hits if h.score is None or h.score >= threshold]
        if len(kept) != len(hits):
            display.hits_below_threshold(step_id, len(hits) - len(kept), threshold)
        return kept
