"""Challenge stage: stress-test the research before synthesis consumes it."""

import logging
import time

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.debate import execute_challenges, generate_challenges, resolve_debates
from spec_council.errors import StageFailedError
from spec_council.models import DialogueEntry, Round, StageMetadata

logger = logging.getLogger(__name__)


async def run_challenge_stage(ctx: StageContext, round_: Round) -> StageOutput:
    if not round_.research:
        raise StageFailedError("challenge", round_.number, "no research results to challenge")

    start = time.monotonic()
    challenges, generate_cost = await generate_challenges(ctx, round_.research)

    responses_outcome = await execute_challenges(ctx, challenges, round_.research)
    responses_outcome.raise_if_empty("challenge", round_.number)
    responses = tuple(
        responses_outcome.results[c.id] for c in challenges if c.id in responses_outcome.results
    )

    resolutions_outcome = await resolve_debates(ctx, challenges, responses, round_.research)
    resolved = [
        resolutions_outcome.results[r.agent_id]
        for r in round_.research
        if r.agent_id in resolutions_outcome.results
    ]
    resolutions = tuple(resolution for resolution, _ in resolved)

    failures = dict(round_.failures)
    failures.update({f"challenge:{k}": v for k, v in responses_outcome.failures.items()})
    failures.update({f"resolution:{k}": v for k, v in resolutions_outcome.failures.items()})

    cost = generate_cost + sum(r.cost for r in responses) + sum(c for _, c in resolved)
    logger.info(
        "Round %d challenge: %d challenges, %d responses, %d resolutions",
        round_.number,
        len(challenges),
        len(responses),
        len(resolutions),
    )

    dialogue = tuple(
        DialogueEntry(r.challenger, r.challenge, now_iso()) for r in responses
    ) + tuple(
        DialogueEntry(r.agent_id, f"Resolution ({r.confidence_change:+d}): {r.resolution}", now_iso(), "answer")
        for r in resolutions
    )

    return StageOutput(
        updates={
            "challenges": challenges,
            "challenge_responses": responses,
            "resolutions": resolutions,
            "failures": failures,
        },
        metadata=StageMetadata(
            cost=cost,
            duration_sec=time.monotonic() - start,
            counts={
                "challenges": len(challenges),
                "responses": len(responses),
                "resolutions": len(resolutions),
                "failed": len(responses_outcome.failures) + len(resolutions_outcome.failures),
                "mean_risk": (
                    sum(r.risk_score for r in responses) / len(responses) if responses else 0.0
                ),
            },
        ),
        dialogue=dialogue,
        model=ctx.model_for("challenge"),
    )
