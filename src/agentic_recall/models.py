# models.py
# Data contracts for the multi-step retrieval engine.
# Schemas only; validation lives in the field constraints.

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class Step(BaseModel):
    """A single retrieval unit in a plan."""

    step_id: str = Field(..., min_length=1, description="Unique within a plan.")
    purpose: str = Field(default="unspecified", description="Free-text rationale.")
    requires_embedding: bool = Field(default=False)
    depends_on: list[str] = Field(
        default_factory=list,
        description="Earlier step_ids whose hits feed this step's identifier filter.",
    )
    is_final: bool = Field(default=False, description="Advisory only.")
    query_template: dict[str, Any] = Field(
        ..., description="Backend request body, possibly holding placeholders."
    )
    result_limit: PositiveInt | None = Field(
        default=None, description="Page size; the configured default applies when unset."
    )


class Plan(BaseModel):
    """An ordered retrieval attempt, already repaired."""

    steps: list[Step] = Field(..., min_length=1)
    fallback: bool = Field(default=False, description="True when the oracle output was unusable.")

    def step_ids(self) -> list[str]:
        return [step.step_id for step in self.steps]


class Hit(BaseModel):
    """One backend record. `id` is the dedupe key across steps."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id")
    score: float | None = Field(default=None, alias="_score")
    source: dict[str, Any] = Field(default_factory=dict, alias="_source")


class ExecutionResult(BaseModel):
    """Outcome of one executed step within one attempt."""

    step_id: str
    purpose: str = "unspecified"
    hits: list[Hit] = Field(default_factory=list)
    aggregations: dict[str, Any] | None = None
    partial: bool = Field(default=False, description="Cursor died before the last page.")
    error: str | None = Field(default=None, description="Set when the initial request failed.")


class Attempt(BaseModel):
    """Everything one plan execution produced. Discarded after the iteration."""

    results: dict[str, ExecutionResult] = Field(default_factory=dict)
    skipped: dict[str, str] = Field(default_factory=dict, description="step_id -> reason")
    failed: dict[str, str] = Field(default_factory=dict, description="step_id -> error")

    def hit_count(self, step_id: str) -> int:
        result = self.results.get(step_id)
        return len(result.hits) if result else 0


class HistoryEntry(BaseModel):
    """Per-step summary appended to the request history each iteration."""

    iteration: int = Field(..., ge=1)
    step_id: str
    hit_count: int = Field(..., ge=0)
    skipped: bool = False
    distinct_values: int = Field(default=0, ge=0)


class RetrievalOutcome(BaseModel):
    """What retrieve() hands back to the transport layer."""

    status: Literal["converged", "empty", "gave_up"]
    hits: list[Hit] = Field(default_factory=list)
    iterations: int = Field(..., ge=0)
    history: list[HistoryEntry] = Field(default_factory=list)
    aggregations: dict[str, dict[str, Any]] = Field(default_factory=dict)
    plans: list[Plan] = Field(default_factory=list, description="Repaired plan of each iteration.")

    @property
    def gave_up(self) -> bool:
        """True when the iteration budget ran out before coverage was reached."""
        return self.status == "gave_up"
