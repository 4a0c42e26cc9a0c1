"""Tests for spec_council/subagents.py."""

import json

import pytest

from spec_council.errors import OperationCancelledError
from spec_council.models import ResearchQuestion, SubAgentRequest
from spec_council.providers.base import ProviderError
from spec_council.retry import CancellationToken
from spec_council.subagents import (
    MAX_SUGGESTED,
    PARTIAL_CONFIDENCE,
    spawn_multiple_sub_agents,
    spawn_sub_agent,
    suggest_sub_agents,
)
from spec_council.tools.registry import ToolRegistry
from tests.conftest import FakeCompletionService, SearchTool

SEARCH = json.dumps({"tool": "web_search", "params": {"query": "stripe vs paddle"}})


def _request(**overrides) -> SubAgentRequest:
    fields = {
        "parent_agent_id": "alice",
        "specialization": "Payment providers",
        "research_goal": "Compare Stripe, Paddle and LemonSqueezy fees",
        "max_iterations": 3,
    }
    fields.update(overrides)
    return SubAgentRequest(**fields)


async def test_sub_agent_completes(make_ctx):
    service = FakeCompletionService()
    ctx = make_ctx(service, depth="deep")

    result = await spawn_sub_agent(ctx, _request())

    assert result.confidence == 75
    assert result.findings == "Sub-agent comparison done."
    assert result.sub_agent_id == "alice-sub1-payment-providers"
    assert service.calls[0]["model"] == "sub_agent-model"
    assert service.calls[0]["max_tokens"] == 1500


async def test_sub_agent_iteration_cap_gives_partial_result(make_ctx):
    service = FakeCompletionService(by_role={"sub_agent": SEARCH})
    ctx = make_ctx(service, depth="deep", tools=ToolRegistry([SearchTool()]))

    result = await spawn_sub_agent(ctx, _request(max_iterations=2))

    assert result.confidence == PARTIAL_CONFIDENCE
    assert result.findings.startswith("Research incomplete after 2 iterations. Last context:")
    assert "hit for stripe vs paddle" in result.findings
    assert result.iterations == 2
    assert len(result.tools_used) == 2


async def test_sub_agent_default_cap_is_five_iterations(make_ctx):
    service = FakeCompletionService(by_role={"sub_agent": SEARCH})
    ctx = make_ctx(service, depth="deep", tools=ToolRegistry([SearchTool()]))
    request = SubAgentRequest(
        parent_agent_id="alice",
        specialization="Payment providers",
        research_goal="Compare Stripe, Paddle and LemonSqueezy fees",
    )

    result = await spawn_sub_agent(ctx, request)

    assert result.iterations == 5
    assert len(service.calls_for("sub_agent")) == 5
    assert result.confidence == PARTIAL_CONFIDENCE
    assert result.findings.startswith("Research incomplete after 5 iterations.")


async def test_sub_agent_failure_gives_zero_confidence(make_ctx):
    service = FakeCompletionService(by_role={"sub_agent": ProviderError("claude", "bad request", status=400)})
    ctx = make_ctx(service, depth="deep")

    result = await spawn_sub_agent(ctx, _request())

    assert result.confidence == 0
    assert result.findings.startswith("Sub-agent research failed:")


async def test_sub_agent_cancellation_propagates(make_ctx):
    token = CancellationToken()
    token.cancel()
    ctx = make_ctx(FakeCompletionService(), depth="deep", token=token)

    with pytest.raises(OperationCancelledError):
        await spawn_sub_agent(ctx, _request())


async def test_sub_agent_tools_limited_to_depth_tier(make_ctx):
    service = FakeCompletionService()
    ctx = make_ctx(service, depth="quick", tools=ToolRegistry([SearchTool()]))

    await spawn_sub_agent(ctx, _request(tools_needed=("web_search", "npm_search")))

    system = service.calls[0]["messages"][0]["content"]
    assert "web_search(query: string" in system
    assert "Prefer these tools: web_search, npm_search" in system


async def test_spawn_multiple_aggregates(make_ctx):
    replies = {
        "sub_agent": lambda model, messages: (
            json.dumps({"complete": True, "confidence": 90, "findings": "Fast."})
            if "Latency" in messages[0]["content"]
            else json.dumps({"complete": True, "confidence": 60, "findings": "Cheap."})
        )
    }
    service = FakeCompletionService(by_role=replies)
    ctx = make_ctx(service, depth="deep")

    batch = await spawn_multiple_sub_agents(
        ctx, [_request(specialization="Latency"), _request(specialization="Pricing")]
    )

    assert [r.findings for r in batch.results] == ["Fast.", "Cheap."]
    assert batch.mean_confidence == pytest.approx(75.0)
    assert batch.total_cost == pytest.approx(0.002)


async def test_spawn_multiple_empty(make_ctx):
    batch = await spawn_multiple_sub_agents(make_ctx(FakeCompletionService()), [])
    assert batch.results == ()
    assert batch.mean_confidence == 0.0


async def test_suggest_sub_agents_caps_at_three(make_ctx):
    detector = {
        "needsSubAgents": True,
        "reasoning": "Several vendors to compare.",
        "subAgents": [
            {"specialization": f"Vendor {i}", "researchGoal": f"Profile vendor {i}", "toolsNeeded": ["web_search"]}
            for i in range(5)
        ],
    }
    service = FakeCompletionService(by_role={"detect": json.dumps(detector)})
    ctx = make_ctx(service, depth="deep")
    questions = [ResearchQuestion("q1", "Which billing provider?", "technical", 8)]

    requests, cost = await suggest_sub_agents(ctx, "alice", questions, "Stripe looks good.")

    assert len(requests) == MAX_SUGGESTED
    assert requests[0].parent_agent_id == "alice"
    assert requests[0].tools_needed == ("web_search",)
    assert requests[0].context == "Stripe looks good."
    assert cost == pytest.approx(0.001)


async def test_suggest_sub_agents_declined(make_ctx):
    ctx = make_ctx(FakeCompletionService(), depth="deep")
    requests, cost = await suggest_sub_agents(ctx, "alice", [], "Findings.")
    assert requests == []
    assert cost == pytest.approx(0.001)


async def test_suggest_sub_agents_detector_failure_means_none(make_ctx):
    service = FakeCompletionService(by_role={"detect": ProviderError("x", "bad request", status=400)})
    ctx = make_ctx(service, depth="deep")

    requests, cost = await suggest_sub_agents(ctx, "alice", [], "Findings.")

    assert requests == []
    assert cost == 0.0
