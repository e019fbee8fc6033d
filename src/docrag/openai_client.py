"""OpenAI client construction and SDK error classification."""

from __future__ import annotations

import os

import openai
from openai import OpenAI

from docrag.errors import (
    CapabilityError,
    ConfigurationError,
    PermanentCapabilityError,
    Reason,
    TokenLimitExceededError,
    TransientCapabilityError,
)

# USD per 1K (prompt, completion) tokens; unknown models are not priced.
PRICES_PER_1K: dict[str, tuple[float, float]] = {
    "text-embedding-ada-002": (0.0001, 0.0),
    "gpt-4": (0.03, 0.06),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4-turbo-preview": (0.01, 0.03),
    "gpt-4o": (0.005, 0.015),
    "gpt-4o-mini": (0.00015, 0.0006),
}


def build_client(*, timeout: float, api_key: str | None = None) -> OpenAI:
    """Create a client with an explicit per-request timeout.

    SDK-level retries are disabled; retries are driven by ``utils.retry`` so
    transient and permanent failures are told apart in one place.
    """
    api_key = api_key or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set. Put it in env or .env.")
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int = 0) -> float:
    """Approximate USD cost of one call, 0.0 for models without a price."""
    prompt_price, completion_price = PRICES_PER_1K.get(model, (0.0, 0.0))
    return prompt_tokens / 1000 * prompt_price + completion_tokens / 1000 * completion_price


def classify_openai_error(exc: Exception, *, operation: str) -> CapabilityError:
    """Map an OpenAI SDK exception onto the capability error taxonomy."""
    name = type(exc).__name__
    if isinstance(exc, openai.APITimeoutError):
        return TransientCapabilityError(f"{operation} timed out", reason=Reason.TIMEOUT)
    if isinstance(exc, openai.APIConnectionError):
        return TransientCapabilityError(f"{operation} could not reach the API", reason=Reason.UNAVAILABLE)
    if isinstance(exc, openai.RateLimitError):
        return TransientCapabilityError(f"{operation} was rate limited", reason=Reason.RATE_LIMITED)
    if isinstance(exc, openai.InternalServerError):
        return TransientCapabilityError(
            f"{operation} failed with a server error ({exc.status_code})", reason=Reason.UNAVAILABLE
        )
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return PermanentCapabilityError(f"{operation} was not authorized", reason=Reason.AUTHENTICATION)
    if isinstance(exc, openai.BadRequestError) and getattr(exc, "code", None) == "context_length_exceeded":
        return TokenLimitExceededError(f"{operation} input exceeds the model's token limit")
    if isinstance(exc, openai.APIStatusError):
        return PermanentCapabilityError(
            f"{operation} was rejected ({exc.status_code})", reason=Reason.REJECTED
        )
    return PermanentCapabilityError(f"{operation} failed: {name}", reason=Reason.REJECTED)
