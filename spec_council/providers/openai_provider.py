"""OpenAI provider using openai SDK with native async.

An optional `base_url` points the client at an OpenAI-compatible endpoint.
"""

import asyncio
import logging
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from spec_council.models import Completion
from spec_council.providers.base import (
    CompletionProvider,
    Message,
    ProviderError,
    api_failure,
    require_api_key,
    token_cost,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(CompletionProvider):
    """OpenAI (or OpenAI-compatible) provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = require_api_key(config.name, config.api_key_env)
        if config.base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)

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
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens or self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise api_failure(self._config.name, exc) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        prompt_tokens = completion_tokens = 0
        if response.usage:
            prompt_tokens = response.usage.prompt_tokens
            completion_tokens = response.usage.completion_tokens

        logger.info(
            "OpenAI %s: %.2fs, %d tokens",
            self._config.model,
            latency,
            prompt_tokens + completion_tokens,
        )

        return Completion(
            content=choice.message.content,
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
