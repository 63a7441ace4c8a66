# oracles.py
# External decision-makers and the embedding provider.
#
# The engine depends only on the three protocols below. The OpenAI classes
# are thin adapters: they format the request, make one call, and hand back
# the raw payload. Interpreting a plan is planning.py's job, not theirs.

import json
import os
from typing import Any, Protocol, Sequence

from openai import OpenAI, OpenAIError

from agentic_recall.config import Settings
from agentic_recall.errors import OracleError
from agentic_recall.models import HistoryEntry

PLAN_FN = "generate_query_plan"
COVERAGE_FN = "evaluate_coverage"


class PlanOracle(Protocol):
    def synthesize_plan(self, query: str, history: Sequence[HistoryEntry]) -> Any: ...


class CoverageOracle(Protocol):
    def evaluate(self, query: str, summary: Sequence[HistoryEntry]) -> bool: ...


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

PLAN_SYSTEM_PROMPT = """\
You build OpenSearch DSL retrieval plans. Respond only by calling \
generate_query_plan.

Each step is an object with:
  step_id            unique string
  purpose            why the step exists
  requires_embedding true when query_body contains a knn clause
  depends_on         earlier step_ids whose hits supply {propagate} values
  is_final           true for the step whose hits answer the question
  query_body         OpenSearch request body

Index fields: {fields}
Semantic search: {{"query": {{"knn": {{"{vector}": {{"vector": [], "k": 25}}}}}}}} \
(the vector is filled in for you).
Dependent steps: leave the {propagate} filter out; it is injected from the \
dependencies' hits.
Use the previous summary to change strategy when steps returned nothing.\
"""

COVERAGE_SYSTEM_PROMPT = """\
You judge whether a set of retrieval steps plausibly covers a user request. \
Respond only by calling evaluate_coverage.\
"""


def _summary_json(entries: Sequence[HistoryEntry]) -> str:
    return json.dumps([e.model_dump() for e in entries])


def _tool_arguments(response: Any, name: str) -> dict[str, Any]:
    """Pull and decode the forced tool call's arguments from a completion."""
    try:
        call = response.choices[0].message.tool_calls[0]
    except (AttributeError, IndexError, TypeError) as exc:
        raise OracleError(f"{name}: no tool call in response") from exc
    if call.function.name != name:
        raise OracleError(f"{name}: model called {call.function.name!r}")
    try:
        arguments = json.loads(call.function.arguments)
    except (TypeError, json.JSONDecodeError) as exc:
        raise OracleError(f"{name}: arguments are not JSON") from exc
    if not isinstance(arguments, dict):
        raise OracleError(f"{name}: arguments are not an object")
    return arguments


def build_client(settings: Settings) -> OpenAI:
    return OpenAI(
        api_key=settings.openai_api_key or os.getenv("OPENAI_API_KEY"),
        base_url=settings.openai_base_url,
    )


# ---------------------------------------------------------------------------
# OpenAI adapters
# ---------------------------------------------------------------------------


class OpenAIPlanOracle:
    """Plan synthesis through a forced function call."""

    def __init__(self, client: OpenAI, settings: Settings, fields: Sequence[str] = ()) -> None:
        self._client = client
        self._model = settings.planner_model
        self._system = PLAN_SYSTEM_PROMPT.format(
            fields=", ".join(sorted(fields)) or "unknown",
            vector=settings.vector_field,
            propagate=settings.propagate_field,
        )

    def synthesize_plan(self, query: str, history: Sequence[HistoryEntry]) -> Any:
        tools = [
            {
                "type": "function",
                "function": {
                    "name": PLAN_FN,
                    "description": "Return the retrieval plan as {plan: [step, ...]}.",
                    "parameters": {
                        "type": "object",
                        "properties": {"plan": {"type": "array", "items": {"type": "object"}}},
                        "required": ["plan"],
                    },
                },
            }
        ]
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": self._system},
                    {
                        "role": "user",
                        "content": f"User query: {query}\nPrevious summary: {_summary_json(history)}",
                    },
                ],
                tools=tools,
                tool_choice={"type": "function", "function": {"name": PLAN_FN}},
            )
        except OpenAIError as exc:
            raise OracleError(f"{PLAN_FN}: {exc}") from exc
        return _tool_arguments(response, PLAN_FN).get("plan")


class OpenAICoverageOracle:
    """Yes/no coverage judgement through a forced function call."""

    def __init__(self, client: OpenAI, settings: Settings) -> None:
        self._client = client
        self._model = settings.coverage_model

    def evaluate(self, query: str, summary: Sequence[HistoryEntry]) -> bool:
        tools = [
            {
                "type": "function",
                "function": {
                    "name": COVERAGE_FN,
                    "description": "Return {covered: boolean}.",
                    "parameters": {
                        "type": "object",
                        "properties": {"covered": {"type": "boolean"}},
                        "required": ["covered"],
                    },
                },
            }
        ]
        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": COVERAGE_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Query: {query}\nHit summary: {_summary_json(summary)}"},
                ],
                tools=tools,
                tool_choice={"type": "function", "function": {"name": COVERAGE_FN}},
            )
        except OpenAIError as exc:
            raise OracleError(f"{COVERAGE_FN}: {exc}") from exc

        covered = _tool_arguments(response, COVERAGE_FN).get("covered")
        if not isinstance(covered, bool):
            raise OracleError(f"{COVERAGE_FN}: 'covered' is {covered!r}, not a boolean")
        return covered


class OpenAIEmbedder:
    """Embedding provider. Dimension checks happen in the materializer."""

    def __init__(self, client: OpenAI, settings: Settings) -> None:
        self._client = client
        self._model = settings.embed_model
        self._dim = settings.embed_dim

    def embed(self, text: str) -> list[float]:
        if not text.strip():
            return [0.0] * self._dim
        response = self._client.embeddings.create(model=self._model, input=text)
        return list(response.data[0].embedding)
