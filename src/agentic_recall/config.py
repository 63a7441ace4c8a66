# config.py
# Runtime settings. Loaded once from the environment (and .env) and then
# treated as read-only; every request shares the same Settings instance.

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, PositiveInt

load_dotenv()


DEFAULT_SOURCE_FIELDS = ["doc_id", "doc_type", "issue_id", "file_path", "attachment_content"]


class Settings(BaseModel):
    """Engine guard-rails plus collaborator wiring."""

    # Backend
    opensearch_host: str = "localhost"
    opensearch_port: int = 9200
    opensearch_use_ssl: bool = False
    index_name: str = "redmine_index"
    lookup_index: str | None = None
    vector_field: str = "embedding"
    source_fields: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_FIELDS))

    # Embeddings
    embed_dim: PositiveInt = 3072
    embed_model: str = "text-embedding-3-large"

    # Oracles
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    planner_model: str = "gpt-4o"
    coverage_model: str = "gpt-4o"

    # Guard-rails
    default_k: PositiveInt = 25
    max_plan_steps: PositiveInt = 15
    max_iterations: PositiveInt = 6
    max_inline_terms: PositiveInt = 1000
    cursor_ttl_seconds: PositiveInt = 60
    min_score: float | None = None
    max_workers: PositiveInt = 1

    # Dependency propagation
    propagate_field: str = "issue_id"
    identifier_field: str = "issue_id"

    merge_policy: Literal["round_robin", "best_score"] = "round_robin"
    ensure_semantic_step: bool = False

    @property
    def cursor_ttl(self) -> str:
        """Scroll keep-alive in backend duration syntax."""
        return f"{self.cursor_ttl_seconds}s"

    @property
    def id_list_index(self) -> str:
        """Where large identifier sets are stored for terms lookups; kept apart from the search index."""
        return self.lookup_index or f"{self.index_name}-id-lists"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from RECALL_* variables plus the conventional service ones."""
        env = {
            "opensearch_host": os.getenv("OPENSEARCH_HOST"),
            "opensearch_port": os.getenv("OPENSEARCH_PORT"),
            "opensearch_use_ssl": os.getenv("OPENSEARCH_USE_SSL"),
            "index_name": os.getenv("OPENSEARCH_INDEX_NAME"),
            "lookup_index": os.getenv("RECALL_LOOKUP_INDEX"),
            "vector_field": os.getenv("RECALL_VECTOR_FIELD"),
            "embed_dim": os.getenv("EMBED_DIM"),
            "embed_model": os.getenv("OPENAI_EMBED_MODEL"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_base_url": os.getenv("OPENAI_BASE_URL"),
            "planner_model": os.getenv("RECALL_PLANNER_MODEL"),
            "coverage_model": os.getenv("RECALL_COVERAGE_MODEL"),
            "default_k": os.getenv("DEFAULT_K"),
            "max_plan_steps": os.getenv("RECALL_MAX_PLAN_STEPS"),
            "max_iterations": os.getenv("RECALL_MAX_ITERATIONS"),
            "max_inline_terms": os.getenv("RECALL_MAX_INLINE_TERMS"),
            "cursor_ttl_seconds": os.getenv("RECALL_CURSOR_TTL_SECONDS"),
            "min_score": os.getenv("RECALL_MIN_SCORE"),
            "max_workers": os.getenv("RECALL_MAX_WORKERS"),
            "propagate_field": os.getenv("RECALL_PROPAGATE_FIELD"),
            "identifier_field": os.getenv("RECALL_IDENTIFIER_FIELD"),
            "merge_policy": os.getenv("RECALL_MERGE_POLICY"),
            "ensure_semantic_step": os.getenv("RECALL_ENSURE_SEMANTIC"),
        }
        source_fields = os.getenv("RECALL_SOURCE_FIELDS")
        if source_fields:
            env["source_fields"] = [f.strip() for f in source_fields.split(",") if f.strip()]

        # Unset variables fall through to the model defaults.
        return cls.model_validate({k: v for k, v in env.items() if v not in (None, "")})
