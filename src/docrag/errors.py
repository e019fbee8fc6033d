"""Error taxonomy shared by the ingestion and query pipelines."""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Pipeline stage an error originated from."""

    CONFIGURATION = "configuration"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"
    QUERY_EMBEDDING = "query_embedding"
    SEARCH = "search"
    GENERATION = "generation"
    STORAGE = "storage"


class Reason(str, Enum):
    """Machine-readable failure reason exposed to callers."""

    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    INPUT_TOO_LARGE = "input_too_large"
    AUTHENTICATION = "authentication"
    REJECTED = "rejected"
    DIMENSION_MISMATCH = "dimension_mismatch"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


TRANSIENT_REASONS = frozenset({Reason.TIMEOUT, Reason.UNAVAILABLE, Reason.RATE_LIMITED})


class DocRagError(Exception):
    """Base error carrying enough context to diagnose a failed run.

    ``stage``, ``document_id`` and ``chunk_index`` are filled in by the
    pipeline that observed the failure; the message never contains raw
    transport payloads.
    """

    default_reason = Reason.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        reason: Reason | None = None,
        stage: Stage | None = None,
        document_id: int | None = None,
        chunk_index: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.stage = stage
        self.document_id = document_id
        self.chunk_index = chunk_index

    def at(
        self,
        stage: Stage,
        *,
        document_id: int | None = None,
        chunk_index: int | None = None,
    ) -> "DocRagError":
        """Attach pipeline context unless an inner layer already did."""
        if self.stage is None:
            self.stage = stage
        if self.document_id is None:
            self.document_id = document_id
        if self.chunk_index is None:
            self.chunk_index = chunk_index
        return self

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> dict:
        payload = {
            "reason": self.reason.value,
            "stage": self.stage.value if self.stage else None,
            "message": self.message,
        }
        if self.document_id is not None:
            payload["document_id"] = self.document_id
        if self.chunk_index is not None:
            payload["chunk_index"] = self.chunk_index
        return payload

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage is not None:
            parts.append(f"stage={self.stage.value}")
        if self.document_id is not None:
            parts.append(f"document={self.document_id}")
        if self.chunk_index is not None:
            parts.append(f"chunk={self.chunk_index}")
        return " | ".join(parts)


class ConfigurationError(DocRagError):
    """Invalid or missing configuration. Raised before any external call."""

    default_reason = Reason.CONFIGURATION

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("stage", Stage.CONFIGURATION)
        super().__init__(message, **kwargs)


class CapabilityError(DocRagError):
    """An embedding, index or generation call failed."""

    default_reason = Reason.REJECTED

    @property
    def retryable(self) -> bool:
        return self.reason in TRANSIENT_REASONS


class TransientCapabilityError(CapabilityError):
    """Network, timeout or throttling failure. Retried with backoff."""

    default_reason = Reason.UNAVAILABLE


class PermanentCapabilityError(CapabilityError):
    """Failure that will not go away on retry (bad input, credentials)."""

    default_reason = Reason.REJECTED

    @property
    def retryable(self) -> bool:
        return False


class TokenLimitExceededError(PermanentCapabilityError):
    """Input (plus reserved output) does not fit the model's token window."""

    default_reason = Reason.INPUT_TOO_LARGE


class DimensionMismatchError(DocRagError):
    """Query vector dimensionality differs from the index dimensionality."""

    default_reason = Reason.DIMENSION_MISMATCH


class DocumentNotFoundError(DocRagError):
    default_reason = Reason.NOT_FOUND


class PipelineError(DocRagError):
    """Unexpected failure wrapped with stage context."""

    default_reason = Reason.INTERNAL
