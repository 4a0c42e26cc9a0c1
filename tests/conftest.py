"""Shared pytest fixtures."""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
    RetryConfig,
    RoutingConfig,
    load_config,
)
from spec_council.context import StageContext
from spec_council.depth import get_depth_config
from spec_council.models import AgentConfig, Completion
from spec_council.providers.base import CompletionProvider
from spec_council.retry import RetryOptions
from spec_council.tools.registry import Tool, ToolParameter, ToolRegistry, ToolResult

STAGE_ROLES = (
    "questions", "research", "sub_agent", "challenge", "resolution",
    "synthesis", "review", "voting", "spec", "chat",
)

# Marker phrase in the prompt -> reply role. Checked in order, first match wins.
PROMPT_MARKERS = (
    ("Answer the user's follow-up", "chat"),
    ("Write this section of the technical specification", "spec"),
    ("Is this ready to become the final specification", "voting"),
    ("Review these expert syntheses", "review"),
    ("Write your final recommendation", "synthesis"),
    ("Reconcile the position", "resolution"),
    ("playing devil's advocate", "respond"),
    ("challenge questions that stress-test", "challenge"),
    ("Should this research spawn focused sub-agents", "detect"),
    ("You are a research sub-agent", "sub_agent"),
    ("Research these questions", "research"),
    ("research questions that must be answered", "questions"),
)

DEFAULT_REPLIES: dict[str, str] = {
    "chat": "Keep the MVP small and ship the Slack integration first.",
    "spec": "## Section\n\nConcrete details.",
    "voting": json.dumps(
        {"approved": True, "confidence": 80, "reasoning": "Solid plan.", "keyRequirements": ["SSO login"]}
    ),
    "review": json.dumps({"overallScore": 82, "passed": True, "issues": [], "recommendations": ["Add load tests"]}),
    "synthesis": "Use Postgres behind a REST API.",
    "resolution": json.dumps(
        {"resolution": "Keep Postgres, add a cache.", "confidenceChange": 10, "adoptedAlternatives": ["Redis cache"]}
    ),
    "respond": json.dumps(
        {
            "challenge": "Postgres may not scale for write-heavy load.",
            "evidenceAgainst": ["write amplification"],
            "alternativeApproach": "Use DynamoDB",
            "riskScore": 6,
        }
    ),
    "challenge": json.dumps(
        {"challenges": [{"type": "risk", "question": "What breaks first at scale?", "targetFindingIndex": 0,
                         "priority": 7}]}
    ),
    "detect": json.dumps({"needsSubAgents": False}),
    "sub_agent": json.dumps({"complete": True, "confidence": 75, "findings": "Sub-agent comparison done."}),
    "research": json.dumps({"complete": True, "confidence": 80, "findings": "Postgres with a REST API fits."}),
    "questions": json.dumps(
        {
            "questions": [
                {"id": "q1", "question": "Which database fits?", "domain": "technical", "priority": 9},
                {"id": "q2", "question": "What should onboarding look like?", "domain": "design", "priority": 6},
                {"id": "q3", "question": "Who are the competitors?", "domain": "market", "priority": 5},
                {"id": "q4", "question": "Which privacy laws apply?", "domain": "legal", "priority": 4},
            ]
        }
    ),
}

Reply = str | BaseException | Callable[[str, list[dict[str, str]]], "str | BaseException"]


def prompt_role(messages: list[dict[str, str]]) -> str | None:
    """Which pipeline prompt a message list carries, by marker phrase."""
    text = "\n".join(m["content"] for m in messages)
    for marker, role in PROMPT_MARKERS:
        if marker in text:
            return role
    return None


class FakeCompletionService:
    """Scripted completion service.

    Replies come from `replies` in order while any are left, then from the
    per-role table (DEFAULT_REPLIES overridden by `by_role`). A reply may be a
    string, an exception to raise, or a callable(model, messages) returning either.
    """

    def __init__(
        self,
        replies: list[Reply] | None = None,
        by_role: dict[str, Reply] | None = None,
        default: str = "OK",
        delay: float = 0.0,
    ) -> None:
        self.replies = list(replies or [])
        self.by_role = {**DEFAULT_REPLIES, **(by_role or {})}
        self.default = default
        self.delay = delay
        self.calls: list[dict] = []

    def calls_for(self, role: str) -> list[dict]:
        return [c for c in self.calls if c["role"] == role]

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int | None = None,
    ) -> Completion:
        role = prompt_role(messages)
        self.calls.append(
            {"model": model, "messages": list(messages), "temperature": temperature,
             "max_tokens": max_tokens, "role": role}
        )
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.replies:
            reply = self.replies.pop(0)
        else:
            reply = self.by_role.get(role, self.default) if role else self.default
        if callable(reply) and not isinstance(reply, BaseException):
            reply = reply(model, messages)
        if isinstance(reply, BaseException):
            raise reply
        return Completion(
            content=reply,
            model=model,
            cost=0.001,
            prompt_tokens=10,
            completion_tokens=5,
            latency_sec=0.01,
        )


class MockProvider(CompletionProvider):
    """Test double CompletionProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because complete is defined in the class body below.
        self.complete = AsyncMock(  # type: ignore[assignment]
            return_value=Completion(
                content=response_content,
                model="mock-model",
                cost=0.0,
                prompt_tokens=5,
                completion_tokens=5,
                latency_sec=0.1,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def complete(self, messages, temperature, max_tokens=None) -> Completion:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return Completion(self._response_content, "mock-model", 0.0, 5, 5, 0.1)


class SearchTool(Tool):
    name = "web_search"
    description = "Search the web."
    parameters = (
        ToolParameter("query", "string", "Search terms"),
        ToolParameter("limit", "integer", "Max results", required=False),
    )

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        self.calls.append(params)
        return ToolResult(success=True, data={"results": [f"hit for {params['query']}"]})


class BrokenTool(Tool):
    name = "market_data"
    description = "Always fails."

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        raise RuntimeError("upstream 500")


def make_agents(*ids: str) -> list[AgentConfig]:
    return [
        AgentConfig(
            id=agent_id,
            name=agent_id.title(),
            instructions=f"You are {agent_id.title()}, a seasoned product advisor.",
            temperature=0.5,
        )
        for agent_id in ids
    ]


FAST_RETRY = RetryOptions(max_retries=2, initial_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture(scope="session")
def settings_config() -> AppConfig:
    """The shipped settings.yaml."""
    return load_config()


@pytest.fixture
def sample_prompts_config(settings_config: AppConfig) -> PromptsConfig:
    return settings_config.prompts


@pytest.fixture
def sample_routing() -> RoutingConfig:
    return RoutingConfig(
        stages={role: f"{role}-model" for role in STAGE_ROLES},
        agent_models={"alice": "alice-model"},
        fallback="fallback-model",
    )


@pytest.fixture
def sample_agents() -> list[AgentConfig]:
    return make_agents("alice", "bob", "carol", "dave", "erin")


@pytest.fixture
def sample_expertise() -> dict[str, dict[str, float]]:
    return {
        "technical": {"alice": 10, "bob": 5},
        "design": {"bob": 10, "erin": 4},
        "market": {"carol": 10},
        "legal": {"dave": 10},
        "growth": {"carol": 8, "erin": 9},
        "security": {"dave": 7, "alice": 6},
    }


@pytest.fixture
def fake_service() -> FakeCompletionService:
    return FakeCompletionService()


@pytest.fixture
def make_ctx(sample_agents, sample_prompts_config, sample_routing, sample_expertise):
    """Factory for a StageContext over the sample panel."""

    def _make(
        service,
        depth: str = "standard",
        tools: ToolRegistry | None = None,
        agents: list[AgentConfig] | None = None,
        challengers: dict[str, list[str]] | None = None,
        token=None,
    ) -> StageContext:
        return StageContext(
            user_input="A habit tracker for remote teams with Slack reminders",
            agents=tuple(agents if agents is not None else sample_agents),
            depth=get_depth_config(depth),
            service=service,
            tools=tools or ToolRegistry(),
            prompts=sample_prompts_config,
            routing=sample_routing,
            expertise=sample_expertise,
            challengers=challengers or {},
            retry=FAST_RETRY,
            token=token,
        )

    return _make


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_app_config(tmp_path: Path, settings_config: AppConfig, sample_routing: RoutingConfig) -> AppConfig:
    return AppConfig(
        defaults=DefaultsConfig(depth="standard", output_dir=tmp_path / "output", max_rounds=2),
        models={},
        prompts=settings_config.prompts,
        routing=sample_routing,
        retry=RetryConfig(max_retries=1, initial_delay_sec=0.0, max_delay_sec=0.0, jitter=False),
    )


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
