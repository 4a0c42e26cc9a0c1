"""Synthesis stage: each expert writes a final recommendation from research plus debate."""

import logging
import time

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.errors import StageFailedError
from spec_council.executor import call_model
from spec_council.fanout import fan_out
from spec_council.models import (
    AgentResearchResult,
    DebateResolution,
    DialogueEntry,
    ExpertSynthesis,
    ResearchQuality,
    Round,
    StageMetadata,
)

logger = logging.getLogger(__name__)


def _format_tools_context(research: AgentResearchResult) -> str:
    if not research.tools_used:
        return "No tools were used; findings come from model knowledge."
    ok = sum(1 for t in research.tools_used if t.success)
    names = sorted({t.tool for t in research.tools_used})
    line = f"Research used {len(research.tools_used)} tool calls ({ok} succeeded): {', '.join(names)}."
    if research.sub_agents:
        line += f" {len(research.sub_agents)} sub-agents contributed."
    return line


def _format_debate_context(resolution: DebateResolution | None) -> str:
    if resolution is None:
        return ""
    lines = [
        "Debate outcome:",
        f"Resolution: {resolution.resolution}",
        f"Confidence change: {resolution.confidence_change:+d}",
    ]
    if resolution.adopted_alternatives:
        lines.append(f"Adopted alternatives: {', '.join(resolution.adopted_alternatives)}")
    if resolution.confidence_change < 0:
        lines.append("Your position lost confidence in debate; state its risks and weigh it cautiously.")
    return "\n".join(lines)


async def _synthesize_one(
    ctx: StageContext,
    research: AgentResearchResult,
    resolution: DebateResolution | None,
    comment: str | None,
) -> tuple[ExpertSynthesis, float]:
    agent = ctx.agent(research.agent_id)
    prompt = ctx.prompts.synthesis.format(
        agent_name=research.agent_name,
        findings=research.findings,
        tools_context=_format_tools_context(research),
        debate_context=_format_debate_context(resolution),
        user_guidance=f"User guidance: {comment}" if comment else "",
    )
    messages = [{"role": "user", "content": prompt}]
    if agent:
        messages.insert(0, {"role": "system", "content": agent.instructions})

    completion = await call_model(
        ctx,
        ctx.model_for("synthesis"),
        messages,
        temperature=agent.temperature if agent else 0.7,
    )
    if not completion.content.strip():
        raise RuntimeError(f"Synthesis for {research.agent_id} returned empty content")

    return (
        ExpertSynthesis(
            agent_id=research.agent_id,
            agent_name=research.agent_name,
            synthesis=completion.content.strip(),
            timestamp=now_iso(),
            research_quality=ResearchQuality(
                tools_used=len(research.tools_used),
                cost=research.cost,
                duration_sec=research.duration_sec,
                battle_tested=resolution is not None,
                confidence_boost=resolution.confidence_change if resolution else 0,
            ),
        ),
        completion.cost,
    )


async def run_synthesis_stage(ctx: StageContext, round_: Round) -> StageOutput:
    if not round_.research:
        raise StageFailedError("synthesis", round_.number, "no research results to synthesize")

    start = time.monotonic()
    resolutions = {r.agent_id: r for r in round_.resolutions}
    outcome = await fan_out(
        {
            r.agent_id: (lambda r=r: _synthesize_one(ctx, r, resolutions.get(r.agent_id), round_.user_comment))
            for r in round_.research
        }
    )
    outcome.raise_if_empty("synthesis", round_.number)

    done = [outcome.results[r.agent_id] for r in round_.research if r.agent_id in outcome.results]
    syntheses = tuple(s for s, _ in done)
    failures = dict(round_.failures)
    failures.update({f"synthesis:{k}": v for k, v in outcome.failures.items()})

    logger.info("Round %d synthesis: %d/%d experts", round_.number, len(syntheses), len(round_.research))

    return StageOutput(
        updates={"syntheses": syntheses, "failures": failures},
        metadata=StageMetadata(
            cost=sum(c for _, c in done),
            duration_sec=time.monotonic() - start,
            counts={
                "syntheses": len(syntheses),
                "failed": len(outcome.failures),
                "battle_tested": sum(1 for s in syntheses if s.research_quality.battle_tested),
            },
        ),
        dialogue=tuple(DialogueEntry(s.agent_id, s.synthesis, s.timestamp) for s in syntheses),
        model=ctx.model_for("synthesis"),
    )
