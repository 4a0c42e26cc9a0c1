"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from spec_council.models import Completion
from spec_council.providers.base import (
    CompletionProvider,
    Message,
    ProviderError,
    api_failure,
    require_api_key,
    split_system,
    token_cost,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(CompletionProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = require_api_key(config.name, config.api_key_env)
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None = None,
    ) -> Completion:
        system, conversation = split_system(messages)
        kwargs = {}
        if system:
            kwargs["system"] = system
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=max_tokens or self._config.max_tokens,
                    temperature=temperature,
                    messages=conversation,
                    **kwargs,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise api_failure(self._config.name, exc) from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        prompt_tokens = completion_tokens = 0
        if response.usage:
            prompt_tokens = response.usage.input_tokens
            completion_tokens = response.usage.output_tokens

        logger.info(
            "Anthropic %s: %.2fs, %d tokens",
            self._config.model,
            latency,
            prompt_tokens + completion_tokens,
        )

        return Completion(
            content="\n".join(text_blocks),
            model=self._config.model,
            cost=token_cost(
                prompt_tokens,
                completion_tokens,
                self._config.input_cost_per_mtok,
                self._config.output_cost_per_mtok,
            ),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_sec=latency,
        )
