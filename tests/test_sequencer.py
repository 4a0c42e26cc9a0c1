"""Tests for spec_council/sequencer.py: the session state machine end to end."""

import asyncio
import json
from dataclasses import replace

import pytest

from spec_council.consensus import ConsensusPolicy
from spec_council.errors import InputValidationError, OperationCancelledError, SessionStateError, StageFailedError
from spec_council.models import STAGE_ORDER
from spec_council.providers.base import ProviderError
from spec_council.retry import CancellationToken
from spec_council.sequencer import PipelineSession, next_stage
from spec_council.snapshot import dump_snapshot, load_snapshot
from spec_council.trace import RecordingTraceSink
from tests.conftest import FAST_RETRY, FakeCompletionService, make_agents

IDEA = "A habit tracker for remote teams with Slack reminders"
REJECT = json.dumps({"approved": False, "confidence": 40, "reasoning": "Too vague."})


@pytest.fixture
def make_session(sample_agents, sample_prompts_config, sample_routing, sample_expertise):
    def _make(service, **kwargs) -> PipelineSession:
        options = {
            "depth": "standard",
            "expertise": sample_expertise,
            "retry": FAST_RETRY,
            "policy": ConsensusPolicy(threshold=0.6, max_rounds=2),
        }
        options.update(kwargs)
        return PipelineSession(
            user_input=IDEA,
            agents=sample_agents,
            service=service,
            prompts=sample_prompts_config,
            routing=sample_routing,
            **options,
        )

    return _make


def test_next_stage_order():
    assert next_stage("questions") == "research"
    assert next_stage("voting") == "spec"
    assert next_stage("spec") == "complete"
    assert next_stage("complete") is None
    assert [next_stage(s) for s in STAGE_ORDER[:-1]] == list(STAGE_ORDER[1:])


async def test_full_run_reaches_complete(make_session):
    trace = RecordingTraceSink()
    session = make_session(FakeCompletionService(), trace=trace)

    final = await session.run_to_completion()

    assert session.is_complete
    assert final.number == 1
    assert final.status == "complete"
    assert final.completed_stages == STAGE_ORDER[:-1]
    assert session.document.startswith("# Technical Specification")
    assert session.total_cost > 0
    assert [t.stage for t in trace.trace] == list(STAGE_ORDER[:-1])
    assert all(t.status == "complete" for t in trace.trace)
    assert trace.trace[0].model == "questions-model"


async def test_each_call_runs_exactly_one_stage(make_session):
    session = make_session(FakeCompletionService())

    assert session.current_stage == "questions"
    round_ = await session.run_next_stage()

    assert round_.completed_stages == ("questions",)
    assert round_.stage == "research"
    assert round_.status == "running"
    assert round_.research == ()
    assert set(round_.metadata) == {"questions"}


async def test_rejection_opens_new_round_with_comment(make_session):
    session = make_session(FakeCompletionService(by_role={"voting": REJECT}))
    session.start_round("Focus on GDPR")

    for _ in range(6):
        await session.run_next_stage()

    first, second = session.rounds
    assert first.stage == "complete"
    assert first.status == "complete"
    assert first.document is None
    assert first.metadata["voting"].counts["advance"] == 0
    assert second.number == 2
    assert second.stage == "questions"
    assert second.user_comment == "Focus on GDPR"
    assert not session.is_complete
    assert any("starting round 2" in e.message for e in session.dialogue if e.speaker == "system")


async def test_plain_text_rejection_opens_new_round(make_session):
    session = make_session(FakeCompletionService(by_role={"voting": "I do not approve; this is not ready."}))

    for _ in range(6):
        await session.run_next_stage()

    first, second = session.rounds
    assert [v.approved for v in first.votes] == [False] * len(session.panel)
    assert first.document is None
    assert second.number == 2
    assert session.current_stage == "questions"


async def test_round_cap_forces_final_document(make_session):
    session = make_session(FakeCompletionService(by_role={"voting": REJECT}))

    final = await session.run_to_completion()

    assert len(session.rounds) == 2
    assert final.number == 2
    assert final.metadata["voting"].counts["advance"] == 1
    assert final.document is not None
    assert session.is_complete


async def test_pipeline_survives_four_of_five_research_failures(make_session):
    def research_reply(model, messages):
        if "You are Carol." in messages[1]["content"]:
            return json.dumps({"complete": True, "findings": "Carol's market notes."})
        return ProviderError(model, "bad request", status=400)

    session = make_session(FakeCompletionService(by_role={"research": research_reply}))

    final = await session.run_to_completion()

    assert session.is_complete
    assert [r.agent_id for r in final.research] == ["carol"]
    assert sorted(k for k in final.failures if k.startswith("research:")) == [
        "research:alice", "research:bob", "research:dave", "research:erin",
    ]
    assert [s.agent_id for s in final.syntheses] == ["carol"]
    assert len(final.votes) == 5


async def test_failed_stage_can_be_retried(make_session):
    service = FakeCompletionService(replies=[ProviderError("m", "bad request", status=400)])
    session = make_session(service)

    with pytest.raises(ProviderError):
        await session.run_next_stage()

    failed = session.current_round
    assert failed.status == "failed"
    assert "bad request" in failed.error
    assert failed.stage == "questions"

    round_ = await session.run_next_stage()
    assert round_.error is None
    assert round_.stage == "research"


async def test_all_agents_failing_fails_the_stage(make_session):
    service = FakeCompletionService(by_role={"research": ProviderError("m", "bad request", status=400)})
    session = make_session(service)
    await session.run_next_stage()

    with pytest.raises(StageFailedError):
        await session.run_next_stage()

    assert session.current_round.status == "failed"
    assert session.current_stage == "research"


async def test_stage_timeout(make_session):
    session = make_session(FakeCompletionService(delay=0.5), stage_timeout_sec=0.05)

    with pytest.raises(StageFailedError, match="timed out"):
        await session.run_next_stage()

    assert session.current_round.status == "failed"


async def test_cancellation_stops_the_stage(make_session):
    token = CancellationToken()
    token.cancel()
    service = FakeCompletionService()
    session = make_session(service, token=token)

    with pytest.raises(OperationCancelledError):
        await session.run_next_stage()

    assert service.calls == []
    assert session.current_round.status == "failed"


async def test_cancel_while_running(make_session):
    token = CancellationToken()
    session = make_session(FakeCompletionService(delay=5.0), token=token)

    task = asyncio.create_task(session.run_next_stage())
    await asyncio.sleep(0.05)
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await task


async def test_pause_and_resume(make_session):
    service = FakeCompletionService()
    session = make_session(service)
    await session.run_next_stage()

    paused = session.pause("Focus on B2B customers")

    assert paused.status == "paused"
    assert session.paused
    with pytest.raises(SessionStateError):
        await session.run_next_stage()

    resumed = session.resume()
    assert resumed.status == "running"
    assert resumed.user_comment == "Focus on B2B customers"

    await session.run_next_stage()
    assert session.current_stage == "challenge"
    user_entries = [e for e in session.dialogue if e.kind == "user"]
    assert [e.message for e in user_entries] == ["Focus on B2B customers"]


async def test_run_to_completion_stops_when_paused(make_session):
    session = make_session(FakeCompletionService())

    def pause_after_research(round_):
        if round_.stage == "challenge":
            session.pause()

    final = await session.run_to_completion(on_stage=pause_after_research)

    assert final.stage == "challenge"
    assert session.paused
    assert not session.is_complete


async def test_illegal_transitions(make_session):
    session = make_session(FakeCompletionService())

    with pytest.raises(SessionStateError):
        session.pause()
    with pytest.raises(SessionStateError):
        session.resume()

    session.start_round()
    with pytest.raises(SessionStateError):
        session.start_round()

    await session.run_to_completion()
    with pytest.raises(SessionStateError):
        await session.run_next_stage()
    with pytest.raises(SessionStateError):
        session.pause()


async def test_reset_clears_rounds(make_session):
    session = make_session(FakeCompletionService())
    await session.run_next_stage()

    session.reset()

    assert session.rounds == ()
    assert session.dialogue == ()
    assert session.current_stage == "questions"


async def test_chat_records_dialogue(make_session):
    service = FakeCompletionService()
    session = make_session(service)

    answer = await session.chat("bob", "  Why Slack first?  ")

    assert answer == "Keep the MVP small and ship the Slack integration first."
    question, reply = session.dialogue[-2:]
    assert (question.speaker, question.message, question.kind, question.target) == (
        "user", "Why Slack first?", "chat", "bob",
    )
    assert (reply.speaker, reply.kind) == ("bob", "chat")


async def test_chat_validation(make_session):
    session = make_session(FakeCompletionService())

    with pytest.raises(InputValidationError) as exc_info:
        await session.chat("bob", "   ")
    assert exc_info.value.category == "prompt_too_short"

    with pytest.raises(InputValidationError) as exc_info:
        await session.chat("zoe", "Hello?")
    assert exc_info.value.category == "invalid_agent"
    assert session.dialogue == ()


async def test_chat_timeout(make_session):
    session = make_session(FakeCompletionService(delay=0.5), chat_timeout_sec=0.05)
    with pytest.raises(TimeoutError):
        await session.chat("bob", "Are you there?")


def test_invalid_depth(make_session):
    with pytest.raises(InputValidationError) as exc_info:
        make_session(FakeCompletionService(), depth="extreme")
    assert exc_info.value.category == "invalid_depth"


def test_auto_depth_uses_prompt_length(make_session):
    session = make_session(FakeCompletionService(), depth="auto")
    assert session.depth.name == "quick"
    assert [a.id for a in session.panel] == ["alice", "bob", "carol"]


def test_invalid_prompt(sample_agents, sample_prompts_config, sample_routing):
    with pytest.raises(InputValidationError) as exc_info:
        PipelineSession("short", sample_agents, FakeCompletionService(), sample_prompts_config, sample_routing)
    assert exc_info.value.category == "prompt_too_short"


def test_disabled_agents_leave_the_panel(sample_prompts_config, sample_routing):
    agents = make_agents("alice", "bob")
    agents[0] = replace(agents[0], enabled=False)

    session = PipelineSession(IDEA, agents, FakeCompletionService(), sample_prompts_config, sample_routing,
                              depth="standard")

    assert [a.id for a in session.panel] == ["bob"]


def test_from_config(sample_app_config, sample_agents):
    session = PipelineSession.from_config(sample_app_config, IDEA, sample_agents, FakeCompletionService(),
                                          depth="quick")

    assert session.depth.name == "quick"
    assert [a.id for a in session.panel] == ["alice", "bob", "carol"]
    assert session.policy.max_rounds == 2
    assert session.context.retry.max_retries == 1


async def test_snapshot_restores_session(make_session, sample_agents, sample_prompts_config, sample_routing):
    session = make_session(FakeCompletionService())
    await session.run_next_stage()
    await session.run_next_stage()
    session.pause("Keep costs low")

    restored_snapshot = load_snapshot(json.dumps(dump_snapshot(session.snapshot())))
    assert restored_snapshot == session.snapshot()

    restored = PipelineSession.from_snapshot(
        restored_snapshot,
        sample_agents,
        FakeCompletionService(),
        sample_prompts_config,
        sample_routing,
        retry=FAST_RETRY,
    )
    assert restored.paused
    assert restored.current_stage == "challenge"
    assert restored.rounds == session.rounds

    restored.resume()
    final = await restored.run_to_completion()
    assert final.status == "complete"
    assert final.user_comment == "Keep costs low"
