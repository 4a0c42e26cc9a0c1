"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import time

from google import genai
from google.genai import types as genai_types

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


def _to_contents(messages: list[Message]) -> list[genai_types.Content]:
    return [
        genai_types.Content(
            role="model" if m["role"] == "assistant" else "user",
            parts=[genai_types.Part(text=m["content"])],
        )
        for m in messages
    ]


class GeminiProvider(CompletionProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = require_api_key(config.name, config.api_key_env)
        self._client = genai.Client(api_key=api_key)

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
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=_to_contents(conversation),
                    config=genai_types.GenerateContentConfig(
                        system_instruction=system or None,
                        temperature=temperature,
                        max_output_tokens=max_tokens or self._config.max_tokens,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise api_failure(self._config.name, exc) from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        prompt_tokens = completion_tokens = 0
        if response.usage_metadata:
            prompt_tokens = response.usage_metadata.prompt_token_count or 0
            completion_tokens = response.usage_metadata.candidates_token_count or 0

        logger.info(
            "Gemini %s: %.2fs, %d tokens",
            self._config.model,
            latency,
            prompt_tokens + completion_tokens,
        )

        return Completion(
            content=response.text,
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
