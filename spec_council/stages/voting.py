"""Voting stage: every panel agent votes on whether the syntheses are ready."""

import logging
import re
import time

from spec_council.consensus import approval_rate
from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.errors import StageFailedError
from spec_council.executor import call_model
from spec_council.fanout import fan_out
from spec_council.models import AgentConfig, DialogueEntry, ExpertVote, ReviewResult, Round, StageMetadata
from spec_council.parsing import clamp_int, extract_object, str_list

logger = logging.getLogger(__name__)

_SYNTHESIS_EXCERPT_CHARS = 1200
_NEGATION = re.compile(r"\b(?:no|not|never|disapproved?|reject(?:ed|s)?|don't|cannot|can't)\b")
_APPROVAL = re.compile(r"\b(?:yes|approved?|approving)\b")


def _explicit_yes(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes")
    return value is True


def parse_vote(agent_id: str, text: str) -> ExpertVote:
    """Parse a vote reply.

    A JSON reply approves only with an explicit `approved: true`. Plain text approves only when it
    says yes or approve as whole words and carries no negation or rejection.
    """
    data = extract_object(text)
    if data is not None and ("approved" in data or "confidence" in data):
        return ExpertVote(
            agent_id=agent_id,
            approved=_explicit_yes(data.get("approved")),
            confidence=clamp_int(data.get("confidence"), 0, 100, 75),
            reasoning=str(data.get("reasoning") or "").strip(),
            key_requirements=str_list(data.get("keyRequirements")),
            timestamp=now_iso(),
        )

    lowered = text.lower()
    approved = not _NEGATION.search(lowered) and bool(_APPROVAL.search(lowered))
    return ExpertVote(
        agent_id=agent_id,
        approved=approved,
        confidence=70 if approved else 30,
        reasoning=text.strip()[:500],
        key_requirements=(),
        timestamp=now_iso(),
    )


def unavailable_vote(agent_id: str, error: str) -> ExpertVote:
    return ExpertVote(
        agent_id=agent_id,
        approved=False,
        confidence=0,
        reasoning=f"vote unavailable: {error}",
        key_requirements=(),
        timestamp=now_iso(),
    )


def _review_summary(review: ReviewResult | None) -> str:
    if review is None:
        return "not available"
    lines = [f"score {review.overall_score}/100, {'passed' if review.passed else 'did not pass'}"]
    lines += [f"- [{i.severity}] {i.description}" for i in review.issues]
    return "\n".join(lines)


async def _vote(ctx: StageContext, agent: AgentConfig, round_: Round) -> tuple[ExpertVote, float]:
    syntheses = "\n\n".join(
        f"## {s.agent_name}\n{s.synthesis[:_SYNTHESIS_EXCERPT_CHARS]}" for s in round_.syntheses
    )
    prompt = ctx.prompts.voting.format(
        syntheses=syntheses,
        review=_review_summary(round_.review),
        comment=f"User guidance: {round_.user_comment}" if round_.user_comment else "",
    )
    completion = await call_model(
        ctx,
        ctx.model_for("voting"),
        [{"role": "system", "content": agent.instructions}, {"role": "user", "content": prompt}],
        temperature=agent.temperature,
    )
    return parse_vote(agent.id, completion.content), completion.cost


async def run_voting_stage(ctx: StageContext, round_: Round) -> StageOutput:
    """Collect exactly one vote per panel agent.

    An agent whose call fails after retries casts a non-approving, zero-confidence
    vote and the failure is recorded. The stage fails only if every call failed.
    """
    if not round_.syntheses:
        raise StageFailedError("voting", round_.number, "no syntheses to vote on")

    start = time.monotonic()
    outcome = await fan_out({a.id: (lambda a=a: _vote(ctx, a, round_)) for a in ctx.agents})
    outcome.raise_if_empty("voting", round_.number)

    votes = tuple(
        outcome.results[a.id][0] if a.id in outcome.results else unavailable_vote(a.id, outcome.failures[a.id])
        for a in ctx.agents
    )
    failures = dict(round_.failures)
    failures.update({f"voting:{k}": v for k, v in outcome.failures.items()})

    rate = approval_rate(votes)
    logger.info(
        "Round %d voting: %d/%d approve (%.0f%%)",
        round_.number,
        sum(1 for v in votes if v.approved),
        len(votes),
        rate * 100,
    )

    return StageOutput(
        updates={"votes": votes, "failures": failures},
        metadata=StageMetadata(
            cost=sum(c for _, c in outcome.results.values()),
            duration_sec=time.monotonic() - start,
            counts={
                "votes": len(votes),
                "approved": sum(1 for v in votes if v.approved),
                "failed": len(outcome.failures),
                "approval_rate": rate,
            },
        ),
        dialogue=tuple(
            DialogueEntry(v.agent_id, f"{'Approve' if v.approved else 'Reject'} ({v.confidence}%): {v.reasoning}",
                          v.timestamp, "answer")
            for v in votes
        ),
        model=ctx.model_for("voting"),
    )
