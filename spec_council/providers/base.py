"""Abstract base for all completion providers."""

import os
from abc import ABC, abstractmethod

from spec_council.errors import AuthorizationError, SpecCouncilError
from spec_council.models import Completion

Message = dict[str, str]


class ProviderError(SpecCouncilError):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, status: int | None = None) -> None:
        self.provider_name = provider_name
        self.status = status
        super().__init__(f"[{provider_name}] {message}")


def status_of(exc: BaseException) -> int | None:
    """HTTP status code carried by an SDK exception, if any."""
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def require_api_key(provider_name: str, api_key_env: str) -> str:
    api_key = os.environ.get(api_key_env, "").strip()
    if not api_key:
        raise AuthorizationError(f"[{provider_name}] Missing API key: {api_key_env}")
    return api_key


def api_failure(provider_name: str, exc: BaseException) -> SpecCouncilError:
    """Wrap an SDK exception; rejected credentials (401/403) become AuthorizationError."""
    status = status_of(exc)
    if status in (401, 403):
        return AuthorizationError(f"[{provider_name}] Credentials rejected ({status}): {exc}")
    return ProviderError(provider_name, f"API call failed: {exc}", status=status)


def token_cost(prompt_tokens: int, completion_tokens: int, input_per_mtok: float, output_per_mtok: float) -> float:
    return (prompt_tokens * input_per_mtok + completion_tokens * output_per_mtok) / 1_000_000


class CompletionProvider(ABC):
    """Abstract base for all completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        temperature: float,
        max_tokens: int | None = None,
    ) -> Completion:
        """Run one chat completion.

        Args:
            messages: Chat messages, each {"role": "system"|"user"|"assistant", "content": str}.
            temperature: Sampling temperature.
            max_tokens: Output cap; provider default when None.

        Returns:
            Completion dataclass with content, cost and token usage.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...


def split_system(messages: list[Message]) -> tuple[str, list[Message]]:
    """Separate system messages (joined) from the conversational ones."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    rest = [m for m in messages if m["role"] != "system"]
    return system, rest
