"""Tests for spec_council/debate.py."""

import json

import pytest

from spec_council.debate import (
    GENERAL_TARGET,
    assign_challenger,
    execute_challenges,
    generate_challenges,
    resolve_debates,
)
from spec_council.models import AgentResearchResult, ChallengeQuestion, ChallengeResponse
from spec_council.providers.base import ProviderError
from tests.conftest import FakeCompletionService

CHALLENGERS = {"risk": ["dave", "bob"], "feasibility": ["alice"]}


def _research(agent_id: str, findings: str = "Use Postgres.") -> AgentResearchResult:
    return AgentResearchResult(
        agent_id=agent_id,
        agent_name=agent_id.title(),
        questions=(),
        findings=findings,
        tools_used=(),
        duration_sec=1.0,
        model=f"{agent_id}-model",
        cost=0.01,
        tokens=100,
    )


def _response(challenge_id: str, challenger: str = "dave", text: str = "Too slow.") -> ChallengeResponse:
    return ChallengeResponse(challenge_id, challenger, text, ("benchmark",), 7, "m", 0.001)


def test_assign_challenger_uses_configured_order():
    panel = ["alice", "bob", "carol", "dave"]
    assert assign_challenger("risk", "carol", panel, CHALLENGERS) == "dave"


def test_assign_challenger_skips_target():
    panel = ["alice", "bob", "dave"]
    assert assign_challenger("risk", "dave", panel, CHALLENGERS) == "bob"


def test_assign_challenger_skips_off_panel_candidates():
    assert assign_challenger("feasibility", "bob", ["bob", "carol"], CHALLENGERS) == "carol"


def test_assign_challenger_single_agent_panel():
    assert assign_challenger("vision", "alice", ["alice"], CHALLENGERS) == "alice"


async def test_generate_challenges_parses_reply(make_ctx):
    reply = {
        "challenges": [
            {"type": "risk", "question": "What if Slack changes its API?", "targetFindingIndex": 1, "priority": 12},
            {"type": "weird", "question": "Is the market real?", "targetFindingIndex": 7},
            {"type": "cost", "question": ""},
        ]
    }
    service = FakeCompletionService(by_role={"challenge": json.dumps(reply)})
    ctx = make_ctx(service, challengers=CHALLENGERS)

    challenges, cost = await generate_challenges(ctx, [_research("alice"), _research("carol")])

    assert len(challenges) == 2
    first, second = challenges
    assert first.target_agent_id == "carol"
    assert first.priority == 10
    assert first.challenger == "dave"
    assert second.type == "assumption"
    assert second.target_agent_id == GENERAL_TARGET
    assert cost == pytest.approx(0.001)


@pytest.mark.parametrize(
    "index, expected",
    [(-1, GENERAL_TARGET), (2, GENERAL_TARGET), (9, GENERAL_TARGET), (None, GENERAL_TARGET),
     ("first", GENERAL_TARGET), (True, GENERAL_TARGET), (0, "alice"), ("1", "bob")],
)
async def test_generate_challenges_invalid_index_is_general(make_ctx, index, expected):
    reply = {"challenges": [{"type": "vision", "question": "Big enough?", "targetFindingIndex": index}]}
    ctx = make_ctx(FakeCompletionService(by_role={"challenge": json.dumps(reply)}))

    challenges, _ = await generate_challenges(ctx, [_research("alice"), _research("bob")])

    assert challenges[0].target_agent_id == expected


async def test_generate_challenges_fallback_two_per_finding(make_ctx):
    ctx = make_ctx(FakeCompletionService(by_role={"challenge": "I refuse to use JSON."}), challengers=CHALLENGERS)

    challenges, _ = await generate_challenges(ctx, [_research("alice"), _research("bob")])

    assert [(c.type, c.target_agent_id) for c in challenges] == [
        ("feasibility", "alice"),
        ("risk", "alice"),
        ("feasibility", "bob"),
        ("risk", "bob"),
    ]
    assert [c.id for c in challenges] == ["c1", "c2", "c3", "c4"]


async def test_generate_challenges_without_research(make_ctx):
    service = FakeCompletionService()
    assert await generate_challenges(make_ctx(service), []) == ((), 0.0)
    assert service.calls == []


async def test_execute_challenges_uses_challenger_persona_and_model(make_ctx):
    service = FakeCompletionService(
        by_role={"respond": json.dumps({"challenge": "Slack rate limits bite.", "riskScore": 42})}
    )
    ctx = make_ctx(service)
    challenge = ChallengeQuestion("c1", "risk", "What breaks first?", "bob", "alice", 6)

    outcome = await execute_challenges(ctx, [challenge], [_research("bob")])

    response = outcome.results["c1"]
    assert response.challenge == "Slack rate limits bite."
    assert response.risk_score == 10
    assert response.alternative_approach is None
    call = service.calls[0]
    assert call["model"] == "alice-model"
    assert call["messages"][0]["content"].startswith("You are Alice")
    assert "You are Alice, playing devil's advocate." in call["messages"][1]["content"]


async def test_execute_challenges_defaults_risk_for_plain_text(make_ctx):
    ctx = make_ctx(FakeCompletionService(by_role={"respond": "This will never scale."}))
    challenge = ChallengeQuestion("c1", "risk", "Scale?", "bob", "carol", 5)

    outcome = await execute_challenges(ctx, [challenge], [_research("bob")])

    assert outcome.results["c1"].challenge == "This will never scale."
    assert outcome.results["c1"].risk_score == 5


async def test_execute_challenges_records_failures(make_ctx):
    def reply(model, messages):
        if "Question two" in messages[-1]["content"]:
            return ProviderError("x", "bad request", status=400)
        return json.dumps({"challenge": "Fine.", "riskScore": 2})

    ctx = make_ctx(FakeCompletionService(by_role={"respond": reply}))
    challenges = [
        ChallengeQuestion("c1", "risk", "Question one", "bob", "carol", 5),
        ChallengeQuestion("c2", "cost", "Question two", "bob", "carol", 5),
    ]

    outcome = await execute_challenges(ctx, challenges, [_research("bob")])

    assert set(outcome.results) == {"c1"}
    assert "bad request" in outcome.failures["c2"]


async def test_resolve_debates_groups_by_target(make_ctx):
    service = FakeCompletionService(
        by_role={"resolution": json.dumps({"resolution": "Add a queue.", "confidenceChange": -250})}
    )
    ctx = make_ctx(service)
    challenges = [
        ChallengeQuestion("c1", "risk", "Q1", "alice", "dave", 5),
        ChallengeQuestion("c2", "cost", "Q2", "alice", "bob", 5),
        ChallengeQuestion("c3", "vision", "Q3", GENERAL_TARGET, "bob", 5),
    ]
    responses = [_response("c1", text="Too slow."), _response("c2", "bob", "Too pricey."), _response("c3", "bob")]

    outcome = await resolve_debates(ctx, challenges, responses, [_research("alice"), _research("bob")])

    assert set(outcome.results) == {"alice"}
    resolution, cost = outcome.results["alice"]
    assert resolution.challenges == ("Too slow.", "Too pricey.")
    assert resolution.confidence_change == -100
    assert resolution.resolution == "Add a queue."
    assert cost == pytest.approx(0.001)
    assert len(service.calls) == 1
    assert service.calls[0]["model"] == "resolution-model"
