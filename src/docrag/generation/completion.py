"""Text generation through the OpenAI chat completions API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from openai import OpenAI, OpenAIError

from docrag.config import DEFAULT_CHAT_MODEL
from docrag.embedding.tokenizer import MODEL_LIMITS, TokenizerRegistry, count_message_tokens
from docrag.errors import TokenLimitExceededError
from docrag.openai_client import classify_openai_error, estimate_cost
from docrag.utils.retry import RetryPolicy, call_with_retry

LOGGER = logging.getLogger(__name__)

# Tokens held back from the window on top of the counted prompt.
RESPONSE_RESERVE = 100


@dataclass(slots=True)
class GenerationResult:
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ChatGenerator(Protocol):
    model_name: str

    def generate(
        self, system_instruction: str, user_prompt: str, max_output_tokens: int
    ) -> GenerationResult: ...


@dataclass(slots=True)
class ChatConfig:
    model_name: str = DEFAULT_CHAT_MODEL
    temperature: float = 0.7
    retry: RetryPolicy = field(default_factory=RetryPolicy)


class OpenAIChatGenerator:
    """Chat completion with a pre-flight token window check."""

    def __init__(
        self,
        client: OpenAI,
        tokenizers: TokenizerRegistry,
        config: ChatConfig | None = None,
    ) -> None:
        self.config = config or ChatConfig()
        self.client = client
        self.tokenizers = tokenizers
        self.model_name = self.config.model_name

    def output_allowance(self, messages: list[dict], max_output_tokens: int) -> tuple[int, int]:
        """Return ``(input_tokens, max_output)`` or raise when nothing fits."""
        tokenizer = self.tokenizers.get(self.model_name)
        input_tokens = count_message_tokens(tokenizer, messages, self.model_name)
        window = MODEL_LIMITS.get(self.model_name)
        if window is None:
            return input_tokens, max_output_tokens

        max_output = min(max_output_tokens, window - input_tokens - RESPONSE_RESERVE)
        if max_output <= 0:
            LOGGER.error(
                "Token limit exceeded! input=%d + output=%d > %d",
                input_tokens,
                max_output_tokens,
                window,
            )
            raise TokenLimitExceededError(
                "Token limit exceeded. Try reducing context or question length."
            )

        usage_percent = round(input_tokens / window * 100, 1)
        if usage_percent > 80:
            LOGGER.warning("High token usage: %s%% of model limit", usage_percent)
        return input_tokens, max_output

    def _request(self, messages: list[dict], max_output: int) -> GenerationResult:
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=max_output,
            )
        except OpenAIError as exc:
            raise classify_openai_error(exc, operation="generation") from exc

        usage = getattr(response, "usage", None)
        result = GenerationResult(
            text=(response.choices[0].message.content or "").strip(),
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        cost = estimate_cost(self.model_name, result.prompt_tokens, result.completion_tokens)
        LOGGER.info(
            "Token usage [chat]: prompt=%d, completion=%d, estimated_cost=$%.6f",
            result.prompt_tokens,
            result.completion_tokens,
            cost,
            extra={
                "event": "token_usage",
                "operation": "generation",
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "estimated_cost": cost,
            },
        )
        return result

    def generate(
        self, system_instruction: str, user_prompt: str, max_output_tokens: int
    ) -> GenerationResult:
        messages = [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": user_prompt},
        ]
        input_tokens, max_output = self.output_allowance(messages, max_output_tokens)
        LOGGER.info(
            "Chat request: model=%s, input_tokens=%d, max_output=%d",
            self.model_name,
            input_tokens,
            max_output,
        )
        return call_with_retry(
            lambda: self._request(messages, max_output), self.config.retry, operation="generation"
        )
