"""Bounded exponential-backoff retry for capability calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docrag.errors import DocRagError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    attempts: int = 3
    initial_wait: float = 1.0
    max_wait: float = 20.0
    jitter: float = 1.0


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, DocRagError) and exc.retryable


def call_with_retry(fn: Callable[[], T], policy: RetryPolicy, *, operation: str) -> T:
    """Call ``fn`` retrying transient capability errors.

    Permanent errors propagate on the first attempt; transient errors are
    re-raised unchanged once ``policy.attempts`` is exhausted.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        LOGGER.warning(
            "%s failed (%s), retry %d/%d",
            operation,
            exc,
            state.attempt_number,
            policy.attempts - 1,
            extra={"operation": operation, "attempt": state.attempt_number},
        )

    retrying = Retrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(max(policy.attempts, 1)),
        wait=wait_exponential_jitter(
            initial=policy.initial_wait, max=policy.max_wait, jitter=policy.jitter
        ),
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(fn)
