"""Shared inputs and outputs for stage handlers.

Handlers are `async def run_<stage>_stage(ctx, round_) -> StageOutput`. They
read the Round, never mutate it, and return the fields to fold into the next
Round value. The sequencer does the folding.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Protocol

from config.config_loader import PromptsConfig, RoutingConfig
from spec_council.depth import DepthConfig
from spec_council.models import AgentConfig, Completion, DialogueEntry, StageMetadata
from spec_council.retry import CancellationToken, RetryOptions
from spec_council.tools.registry import ToolRegistry


class CompletionService(Protocol):
    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int | None = None,
    ) -> Completion:
        ...


@dataclass(frozen=True)
class StageContext:
    user_input: str
    agents: tuple[AgentConfig, ...]          # panel after depth filtering
    depth: DepthConfig
    service: CompletionService
    tools: ToolRegistry
    prompts: PromptsConfig
    routing: RoutingConfig
    expertise: dict[str, dict[str, float]] = field(default_factory=dict)
    challengers: dict[str, list[str]] = field(default_factory=dict)
    retry: RetryOptions = field(default_factory=RetryOptions)
    token: CancellationToken | None = None

    def agent(self, agent_id: str) -> AgentConfig | None:
        return next((a for a in self.agents if a.id == agent_id), None)

    def agent_ids(self) -> list[str]:
        return [a.id for a in self.agents]

    def model_for(self, role: str) -> str:
        return self.routing.for_stage(role)

    def model_for_agent(self, agent_id: str) -> str:
        return self.routing.for_agent(agent_id)

    def retry_options(self) -> RetryOptions:
        """Retry policy bound to this context's cancellation token."""
        return replace(self.retry, token=self.token)


@dataclass(frozen=True)
class StageOutput:
    updates: dict[str, Any]                      # Round field -> new value
    metadata: StageMetadata = field(default_factory=StageMetadata)
    dialogue: tuple[DialogueEntry, ...] = ()
    model: str | None = None                     # model key that served the stage, for tracing


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
