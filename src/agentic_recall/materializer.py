# materializer.py
# Turns a Step's query template into a concrete backend request.
#
# Order of operations for one step:
#   copy template → bound size → field validation (demote on unknown)
#   → embedding injection → dependency identifier injection
#
# Any MaterializationError raised here skips the step; it is never sent.

import copy
import threading
from collections.abc import Mapping
from typing import Any

from agentic_recall import display
from agentic_recall.backend import SearchBackend
from agentic_recall.config import Settings
from agentic_recall.errors import (
    DependencyEmptyError,
    DependencyMissingError,
    EmbeddingDimensionError,
)
from agentic_recall.models import ExecutionResult, Step
from agentic_recall.oracles import Embedder
from agentic_recall.planning import semantic_template
from agentic_recall.treewalk import iter_nodes, transform

# Leaf clauses whose keys (or "field" value) name a document field.
FIELD_CLAUSES = frozenset(
    {"match", "match_phrase", "match_phrase_prefix", "term", "terms", "range",
     "prefix", "wildcard", "fuzzy", "regexp", "exists", "knn"}
)
# Clause options that sit beside the field name.
CLAUSE_OPTIONS = frozenset({"boost", "_name"})


class EmbeddingCache:
    """
    Per-request vectors keyed by the literal text that was embedded.

    The lock is held across the provider call so concurrent steps asking for
    the same text trigger exactly one embedding.
    """

    def __init__(self, embedder: Embedder) -> None:
        self._embedder = embedder
        self._vectors: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def get(self, text: str) -> list[float]:
        with self._lock:
            if text not in self._vectors:
                vector = list(self._embedder.embed(text))
                display.embedding_computed(text, len(vector))
                self._vectors[text] = vector
            return self._vectors[text]


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def referenced_fields(body: Mapping[str, Any]) -> list[str]:
    """Root field names referenced by leaf clauses under query / post_filter."""
    fields: list[str] = []
    for section in ("query", "post_filter"):
        for _, node in iter_nodes(body.get(section)):
            if not isinstance(node, dict):
                continue
            for clause in FIELD_CLAUSES.intersection(node):
                value = node[clause]
                if not isinstance(value, dict):
                    continue
                if clause == "exists":
                    names = [value["field"]] if isinstance(value.get("field"), str) else []
                else:
                    names = [k for k in value if k not in CLAUSE_OPTIONS]
                fields.extend(name.split(".")[0] for name in names)
    return list(dict.fromkeys(fields))


def inject_vector(body: Any, vector: list[float], k: int, vector_field: str) -> tuple[Any, int]:
    """Fill every knn placeholder on `vector_field`, at any depth."""
    replaced = 0

    def fill(_path, node):
        nonlocal replaced
        if isinstance(node, dict) and isinstance(node.get("knn"), dict):
            clause = node["knn"].get(vector_field)
            if isinstance(clause, dict):
                replaced += 1
                knn = dict(node["knn"])
                knn[vector_field] = {**clause, "vector": list(vector), "k": clause.get("k") or k}
                return {**node, "knn": knn}
        return node

    return transform(body, fill), replaced


def add_filter(body: dict[str, Any], clause: dict[str, Any], field: str) -> dict[str, Any]:
    """
    Put `clause` into the request's bool filter.

    An existing terms clause on the same field is replaced; a non-bool query
    is wrapped in bool.must so its scoring is kept.
    """
    query = body.get("query")
    if not query:
        body["query"] = {"bool": {"filter": [clause]}}
        return body
    if not isinstance(query, dict) or set(query) != {"bool"} or not isinstance(query["bool"], dict):
        body["query"] = {"bool": {"must": [query], "filter": [clause]}}
        return body

    bool_query = query["bool"]
    filters = bool_query.get("filter", [])
    if isinstance(filters, dict):
        filters = [filters]
    kept = [
        f for f in filters
        if not (isinstance(f, dict) and isinstance(f.get("terms"), dict) and field in f["terms"])
    ]
    bool_query["filter"] = kept + [clause]
    return body


# ---------------------------------------------------------------------------
# Materializer
# ---------------------------------------------------------------------------


class QueryMaterializer:
    """Builds executable requests for steps against one backend."""

    def __init__(self, settings: Settings, backend: SearchBackend) -> None:
        self._settings = settings
        self._backend = backend

    def result_limit(self, step: Step) -> int:
        size = step.query_template.get("size")
        if step.result_limit:
            return step.result_limit
        if isinstance(size, int) and not isinstance(size, bool) and size > 0:
            return size
        return self._settings.default_k

    def materialize(
        self,
        step: Step,
        query: str,
        cache: EmbeddingCache,
        results: Mapping[str, ExecutionResult],
    ) -> dict[str, Any]:
        limit = self.result_limit(step)
        body = copy.deepcopy(step.query_template)
        body["size"] = limit

        needs_vector = step.requires_embedding
        known = self._backend.field_names()
        unknown = [f for f in referenced_fields(body) if f not in known]
        if unknown:
            display.unknown_field(step.step_id, unknown[0])
            body = self._demoted(body, limit)
            needs_vector = True

        if needs_vector:
            body = self._with_vector(step, body, query, cache, limit)

        if step.depends_on:
            body = self._with_dependencies(step, body, results)

        display.request_materialized(step.step_id, body)
        return body

    # ------------------------------------------------------------------

    def _demoted(self, body: dict[str, Any], limit: int) -> dict[str, Any]:
        demoted = semantic_template(self._settings, limit)
        if "_source" in body:
            demoted["_source"] = body["_source"]
        return demoted

    def _with_vector(
        self,
        step: Step,
        body: dict[str, Any],
        query: str,
        cache: EmbeddingCache,
        limit: int,
    ) -> dict[str, Any]:
        vector = cache.get(query)
        if len(vector) != self._settings.embed_dim:
            raise EmbeddingDimensionError(
                step.step_id,
                f"embedding length {len(vector)} != configured {self._settings.embed_dim}",
            )

        vector_field = self._settings.vector_field
        body, replaced = inject_vector(body, vector, limit, vector_field)
        if replaced:
            return body

        # No placeholder: semantic recall restricted by whatever query was there.
        knn = {"knn": {vector_field: {"vector": list(vector), "k": limit}}}
        existing = body.get("query")
        body["query"] = {"bool": {"must": [knn], "filter": [existing]}} if existing else knn
        return body

    def _with_dependencies(
        self,
        step: Step,
        body: dict[str, Any],
        results: Mapping[str, ExecutionResult],
    ) -> dict[str, Any]:
        field = self._settings.propagate_field
        values: dict[Any, None] = {}

        for dep in step.depends_on:
            result = results.get(dep)
            if result is None:
                raise DependencyMissingError(step.step_id, f"dependency {dep!r} has no result")
            for hit in result.hits:
                value = hit.source.get(field)
                for item in value if isinstance(value, list) else [value]:
                    if item is None or item == "" or isinstance(item, (dict, list)):
                        continue
                    values[item] = None

        ids = list(values)
        if not ids:
            raise DependencyEmptyError(
                step.step_id, f"no {field} values from {', '.join(step.depends_on)}"
            )

        if len(ids) > self._settings.max_inline_terms:
            path = f"{field}_list"
            doc_id = self._backend.store_id_list(path, ids)
            display.ids_indirected(step.step_id, field, len(ids), doc_id)
            lookup = {"index": self._backend.lookup_index, "id": doc_id, "path": path}
            clause = {"terms": {field: lookup}}
        else:
            display.ids_inlined(step.step_id, field, len(ids))
            clause = {"terms": {field: ids}}

        return add_filter(body, clause, field)
