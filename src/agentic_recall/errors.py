# errors.py
# Exception hierarchy for the retrieval engine.
#
# Every error here is recoverable at some seam: oracle errors at the loop,
# materialization and backend errors at the step. Nothing in this file is
# meant to reach the caller of retrieve().


class RecallError(Exception):
    """Base class for every error raised inside agentic_recall."""


# ---------------------------------------------------------------------------
# Oracles
# ---------------------------------------------------------------------------


class OracleError(RecallError):
    """Raised when a plan or coverage oracle call fails or returns garbage."""


# ---------------------------------------------------------------------------
# Materialization (step scoped: the step is skipped)
# ---------------------------------------------------------------------------


class MaterializationError(RecallError):
    """A step could not be turned into an executable request."""

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(f"{step_id}: {message}")
        self.step_id = step_id
        self.reason = message


class DependencyMissingError(MaterializationError):
    """A declared dependency has no result in the current attempt."""


class DependencyEmptyError(MaterializationError):
    """Dependencies ran but yielded no identifiers to propagate."""


class EmbeddingDimensionError(MaterializationError):
    """The embedding provider returned a vector of the wrong length."""


# ---------------------------------------------------------------------------
# Backend (step scoped: empty or partial results)
# ---------------------------------------------------------------------------


class BackendError(RecallError):
    """Search backend unreachable or rejected the request."""


class CursorExpiredError(BackendError):
    """The scroll context disappeared before pagination finished."""
