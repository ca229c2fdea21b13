"""Error taxonomy for the discovery review pipeline.

Every error carries a machine-readable ``kind`` and a human-readable message.
The API layer maps ``kind`` to an HTTP status; nothing else about the
exception (stack, internals) reaches the caller.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    kind: str = "pipeline_error"
    status_code: int = 500

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        data = {"error": self.kind, "message": self.message}
        if self.field:
            data["field"] = self.field
        return data


class MalformedCandidate(PipelineError):
    """A scraped candidate is missing required fields and cannot be stored."""

    kind = "malformed_candidate"
    status_code = 422


class ValidationError(PipelineError):
    """A caller-supplied value violates the operation contract."""

    kind = "validation_error"
    status_code = 400


class NotFound(PipelineError):
    kind = "not_found"
    status_code = 404


class ConflictError(PipelineError):
    """The record is not in the state the transition expects.

    Raised both when the status precondition fails and when a concurrent
    writer bumped the record version first. Callers should refetch and retry.
    """

    kind = "conflict"
    status_code = 409


class PromotionFailure(PipelineError):
    """Writing to the production store failed; the venue stays ``verified``."""

    kind = "promotion_failure"
    status_code = 502


class DedupAmbiguous(PipelineError):
    """The matcher found several equally likely chains for a candidate."""

    kind = "dedup_ambiguous"
    status_code = 409
