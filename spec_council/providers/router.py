"""Model routing: build providers from config and dispatch completions by model key."""

import logging

from config.config_loader import AppConfig
from spec_council.errors import AuthorizationError
from spec_council.models import Completion
from spec_council.providers.anthropic import AnthropicProvider
from spec_council.providers.base import CompletionProvider, Message, ProviderError
from spec_council.providers.gemini import GeminiProvider
from spec_council.providers.openai_provider import OpenAIProvider
from spec_council.providers.openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[CompletionProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "openrouter": OpenRouterProvider,
}


def build_providers(config: AppConfig) -> dict[str, CompletionProvider]:
    """Build all available providers. Returns dict keyed by model key."""
    providers: dict[str, CompletionProvider] = {}
    for name in sorted(config.available_providers):
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' has unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except (ProviderError, AuthorizationError) as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


class ModelRouter:
    """Completion service: `complete(model, messages, temperature, max_tokens)`.

    `model` is a key from the `models` config section. Keys with no built provider
    are served by the fallback key; if neither exists AuthorizationError is raised.
    """

    def __init__(self, providers: dict[str, CompletionProvider], fallback: str | None = None) -> None:
        self._providers = dict(providers)
        self._fallback = fallback

    @property
    def providers(self) -> dict[str, CompletionProvider]:
        return dict(self._providers)

    def resolve(self, model: str) -> CompletionProvider:
        provider = self._providers.get(model)
        if provider is not None:
            return provider
        if self._fallback and self._fallback in self._providers:
            logger.warning("Model '%s' unavailable, falling back to '%s'", model, self._fallback)
            return self._providers[self._fallback]
        raise AuthorizationError(f"[{model}] No provider with credentials for this model key")

    async def complete(
        self,
        model: str,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None = None,
    ) -> Completion:
        return await self.resolve(model).complete(messages, temperature, max_tokens)
