"""Tests for the error taxonomy."""

from __future__ import annotations

from docrag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocRagError,
    PermanentCapabilityError,
    Reason,
    Stage,
    TokenLimitExceededError,
    TransientCapabilityError,
)


class TestDocRagError:
    def test_defaults(self) -> None:
        error = DocRagError("boom")
        assert error.reason is Reason.INTERNAL
        assert error.stage is None
        assert not error.retryable

    def test_at_fills_missing_context_only(self) -> None:
        error = DocRagError("boom", stage=Stage.EMBEDDING)

        result = error.at(Stage.INDEXING, document_id=3, chunk_index=1)

        assert result is error
        assert error.stage is Stage.EMBEDDING
        assert error.document_id == 3
        assert error.chunk_index == 1

    def test_to_dict_and_str(self) -> None:
        error = TransientCapabilityError("embedding timed out", reason=Reason.TIMEOUT).at(
            Stage.EMBEDDING, document_id=7, chunk_index=2
        )

        assert error.to_dict() == {
            "reason": "timeout",
            "stage": "embedding",
            "message": "embedding timed out",
            "document_id": 7,
            "chunk_index": 2,
        }
        assert str(error) == "embedding timed out | stage=embedding | document=7 | chunk=2"

    def test_to_dict_omits_unset_ids(self) -> None:
        assert "document_id" not in DocRagError("x").to_dict()


class TestSubclasses:
    def test_configuration_error_stage(self) -> None:
        error = ConfigurationError("missing key")
        assert error.reason is Reason.CONFIGURATION
        assert error.stage is Stage.CONFIGURATION

    def test_transient_is_retryable(self) -> None:
        assert TransientCapabilityError("down").retryable
        assert TransientCapabilityError("down").reason is Reason.UNAVAILABLE

    def test_permanent_never_retryable(self) -> None:
        assert not PermanentCapabilityError("rejected").retryable
        assert not PermanentCapabilityError("x", reason=Reason.RATE_LIMITED).retryable

    def test_token_limit(self) -> None:
        error = TokenLimitExceededError("too long")
        assert error.reason is Reason.INPUT_TOO_LARGE
        assert isinstance(error, PermanentCapabilityError)

    def test_dimension_mismatch_reason(self) -> None:
        assert DimensionMismatchError("bad").reason is Reason.DIMENSION_MISMATCH
