"""Research stage: every assigned expert researches concurrently, optionally with sub-agents."""

import logging
import time
from collections.abc import Sequence
from dataclasses import replace

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.errors import StageFailedError
from spec_council.executor import execute_research_agent
from spec_council.fanout import fan_out
from spec_council.models import (
    AgentResearchResult,
    DialogueEntry,
    ExpertAssignment,
    Round,
    StageMetadata,
    SubAgentResult,
)
from spec_council.subagents import spawn_multiple_sub_agents, suggest_sub_agents

logger = logging.getLogger(__name__)


def fold_sub_agents(
    result: AgentResearchResult,
    sub_results: Sequence[SubAgentResult],
    extra_cost: float = 0.0,
) -> AgentResearchResult:
    """Append sub-agent findings, cost, tokens and tool calls to the parent's result."""
    if not sub_results:
        return replace(result, cost=result.cost + extra_cost)
    sections = [
        f"### {r.specialization} (confidence {r.confidence}%)\n{r.findings}" for r in sub_results
    ]
    return replace(
        result,
        findings=result.findings + "\n\n## Sub-agent findings\n\n" + "\n\n".join(sections),
        tools_used=result.tools_used + tuple(t for r in sub_results for t in r.tools_used),
        cost=result.cost + extra_cost + sum(r.cost for r in sub_results),
        tokens=result.tokens + sum(r.tokens for r in sub_results),
        sub_agents=tuple(sub_results),
    )


async def _research_one(ctx: StageContext, assignment: ExpertAssignment) -> AgentResearchResult:
    result = await execute_research_agent(ctx, assignment)
    if not ctx.depth.enable_sub_agents:
        return result

    requests, detect_cost = await suggest_sub_agents(
        ctx, assignment.agent_id, assignment.questions, result.findings
    )
    if not requests:
        return fold_sub_agents(result, (), detect_cost)
    batch = await spawn_multiple_sub_agents(ctx, requests)
    return fold_sub_agents(result, batch.results, detect_cost)


async def run_research_stage(ctx: StageContext, round_: Round) -> StageOutput:
    """Fan research out over the round's assignments.

    Agents that fail after retries are recorded under "research:<agent_id>";
    the stage fails only when none succeed.
    """
    if not round_.assignments:
        raise StageFailedError("research", round_.number, "no expert assignments")

    start = time.monotonic()
    outcome = await fan_out(
        {a.agent_id: (lambda a=a: _research_one(ctx, a)) for a in round_.assignments}
    )
    outcome.raise_if_empty("research", round_.number)

    # keep assignment order
    research = tuple(
        outcome.results[a.agent_id] for a in round_.assignments if a.agent_id in outcome.results
    )
    failures = dict(round_.failures)
    failures.update({f"research:{agent_id}": err for agent_id, err in outcome.failures.items()})

    logger.info(
        "Round %d research: %d/%d experts succeeded",
        round_.number,
        len(research),
        len(round_.assignments),
    )

    return StageOutput(
        updates={"research": research, "failures": failures},
        metadata=StageMetadata(
            cost=sum(r.cost for r in research),
            duration_sec=time.monotonic() - start,
            counts={
                "agents": len(round_.assignments),
                "succeeded": len(research),
                "failed": len(outcome.failures),
                "tool_calls": sum(len(r.tools_used) for r in research),
                "sub_agents": sum(len(r.sub_agents) for r in research),
            },
        ),
        dialogue=tuple(DialogueEntry(r.agent_id, r.findings, now_iso()) for r in research),
        model=ctx.model_for("research"),
    )
