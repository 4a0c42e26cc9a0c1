"""OpenRouter provider using openai SDK (OpenAI-compatible API)."""

from config.config_loader import ModelConfig
from spec_council.providers.base import ProviderError
from spec_council.providers.openai_provider import OpenAIProvider


class OpenRouterProvider(OpenAIProvider):
    """OpenRouter gateway via OpenAI-compatible API. Requires `base_url`."""

    def __init__(self, config: ModelConfig) -> None:
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for OpenRouter provider")
        super().__init__(config)
