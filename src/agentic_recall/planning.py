# planning.py
# Plan validation and repair.
#
# Oracle output is duck-typed JSON of unknown quality. Nothing downstream
# touches it until it has been normalized into a Plan here. repair_plan()
# never raises: the worst case is a single semantic-similarity step.

import json
import re
from typing import Any

from pydantic import BaseModel

from agentic_recall import display
from agentic_recall.config import Settings
from agentic_recall.models import Plan, Step
from agentic_recall.treewalk import find_keyed

# Canonical field -> accepted spellings, in priority order.
_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "step_id": ("step_id", "stepId", "id"),
    "purpose": ("purpose", "description"),
    "requires_embedding": ("requires_embedding", "requiresEmbedding"),
    "depends_on": ("depends_on", "dependsOn"),
    "is_final": ("is_final", "isFinal"),
    "query_template": ("query_template", "queryTemplate", "query_body", "queryBody"),
    "result_limit": ("result_limit", "resultLimit"),
}

# Conservative: whole alphanumeric tokens, at least three long, with a digit.
_IDENTIFIER_RE = re.compile(r"(?<![A-Za-z0-9])([A-Za-z0-9]{3,})(?![A-Za-z0-9])")

_TRUTHY = {"true", "yes", "1", "y"}

SEMANTIC_RECALL_ID = "semantic_recall"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def semantic_template(settings: Settings, k: int | None = None) -> dict[str, Any]:
    """k-NN request over the vector field with an empty vector placeholder."""
    k = k or settings.default_k
    return {
        "_source": list(settings.source_fields),
        "size": k,
        "query": {"knn": {settings.vector_field: {"vector": [], "k": k}}},
    }


def term_template(settings: Settings, value: str, k: int | None = None) -> dict[str, Any]:
    """Exact-match filter on the configured identifier field."""
    return {
        "_source": list(settings.source_fields),
        "size": k or settings.default_k,
        "query": {"bool": {"filter": [{"term": {settings.identifier_field: value}}]}},
    }


def semantic_step(
    step_id: str,
    settings: Settings,
    is_final: bool = True,
    purpose: str = "semantic similarity fallback",
) -> Step:
    return Step(
        step_id=step_id,
        purpose=purpose,
        requires_embedding=True,
        depends_on=[],
        is_final=is_final,
        query_template=semantic_template(settings),
    )


def fallback_plan(settings: Settings, reason: str) -> Plan:
    """The plan used whenever the oracle gives us nothing to work with."""
    display.plan_fallback(reason)
    return Plan(steps=[semantic_step("semantic_fallback", settings)], fallback=True)


def extract_identifier(*texts: str | None) -> str | None:
    """First plausible identifier token in the given texts, or None."""
    for text in texts:
        if not text:
            continue
        for match in _IDENTIFIER_RE.finditer(text):
            token = match.group(1)
            if any(ch.isdigit() for ch in token):
                return token
    return None


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def _decoded(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
    return value


def _coerce_entries(raw: Any) -> list[Any] | None:
    """Unwrap the shapes oracles actually send into a list of entries."""
    raw = _decoded(raw)
    if isinstance(raw, Plan):
        raw = raw.steps
    elif isinstance(raw, dict):
        raw = _decoded(raw.get("plan", raw.get("steps")))
    if isinstance(raw, (list, tuple)):
        # Typed steps go through the same repair path as raw mappings.
        return [entry.model_dump() if isinstance(entry, BaseModel) else entry for entry in raw]
    return None


def _canonical(entry: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for field, aliases in _KEY_ALIASES.items():
        for alias in aliases:
            if entry.get(alias) is not None:
                out[field] = entry[alias]
                break
    return out


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _as_dependencies(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    deps = [str(v) for v in value if isinstance(v, (str, int)) and str(v)]
    return list(dict.fromkeys(deps))


def _as_template(value: Any) -> dict[str, Any] | None:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if isinstance(value, dict) and value:
        return value
    return None


def _as_limit(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return limit if limit > 0 else None


def _has_vector_placeholder(template: dict[str, Any], vector_field: str) -> bool:
    for _, knn in find_keyed(template, "knn"):
        clause = knn["knn"]
        if isinstance(clause, dict) and isinstance(clause.get(vector_field), dict):
            return True
    return False


def _unique_id(candidate: Any, index: int, seen: set[str]) -> str:
    base = str(candidate).strip() if isinstance(candidate, (str, int)) else ""
    step_id = base or f"step_{index + 1}"
    if step_id in seen:
        step_id = f"{base or 'step'}_{index + 1}"
        suffix = 2
        while step_id in seen:
            step_id = f"{base or 'step'}_{index + 1}_{suffix}"
            suffix += 1
    if step_id != base:
        display.step_renamed(base or None, step_id)
    seen.add(step_id)
    return step_id


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def repair_plan(raw: Any, query: str, settings: Settings) -> Plan:
    """
    Turn raw oracle output into a Plan that satisfies the data-model rules.

    - non-list / empty / no usable entries  -> single semantic fallback step
    - too many entries                       -> keep the prefix
    - alternate key spellings                -> canonical fields
    - missing query body                     -> identifier term filter or
                                                semantic template
    - no embedding step (opt-in)             -> semantic recall step first,
                                                outside the step cap
    """
    entries = _coerce_entries(raw)
    if not entries:
        return fallback_plan(settings, "empty or not a list")

    if len(entries) > settings.max_plan_steps:
        display.plan_truncated(len(entries), settings.max_plan_steps)
        entries = entries[: settings.max_plan_steps]

    usable: list[dict[str, Any]] = []
    for index, entry in enumerate(entries):
        if isinstance(entry, dict):
            usable.append(_canonical(entry))
        else:
            display.step_dropped(index, f"expected an object, got {type(entry).__name__}")
    if not usable:
        return fallback_plan(settings, "no step objects")

    steps: list[Step] = []
    seen: set[str] = set()
    last = len(usable) - 1

    for index, fields in enumerate(usable):
        step_id = _unique_id(fields.get("step_id"), index, seen)
        purpose = str(fields.get("purpose") or "unspecified")
        limit = _as_limit(fields.get("result_limit"))
        template = _as_template(fields.get("query_template"))
        requires_embedding = _as_bool(fields.get("requires_embedding", False))
        is_final = _as_bool(fields.get("is_final", False))

        if template is None:
            token = extract_identifier(purpose, query)
            if token is not None:
                template = term_template(settings, token, limit)
                requires_embedding = False
                display.template_synthesized(step_id, f"term {settings.identifier_field}={token}")
            else:
                template = semantic_template(settings, limit)
                requires_embedding = True
                display.template_synthesized(step_id, "semantic")
            if index == last:
                is_final = True
        elif _has_vector_placeholder(template, settings.vector_field):
            requires_embedding = True

        steps.append(
            Step(
                step_id=step_id,
                purpose=purpose,
                requires_embedding=requires_embedding,
                depends_on=_as_dependencies(fields.get("depends_on")),
                is_final=is_final,
                query_template=template,
                result_limit=limit,
            )
        )

    if settings.ensure_semantic_step and not any(step.requires_embedding for step in steps):
        step_id = _unique_id(SEMANTIC_RECALL_ID, len(steps), seen)
        steps.insert(
            0,
            semantic_step(step_id, settings, is_final=False, purpose="initial semantic similarity recall"),
        )
        display.semantic_step_added(step_id)

    return Plan(steps=steps)
