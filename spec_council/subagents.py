"""Sub-agent spawner: short, focused tool loops for one narrow research goal."""

import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass

from spec_council.context import StageContext
from spec_council.depth import get_tools_for_depth
from spec_council.errors import OperationCancelledError
from spec_council.executor import call_model, run_tool_loop
from spec_council.fanout import fan_out
from spec_council.models import ResearchQuestion, SubAgentRequest, SubAgentResult
from spec_council.parsing import extract_object, str_list

logger = logging.getLogger(__name__)

SUB_AGENT_TEMPERATURE = 0.6
SUB_AGENT_MAX_TOKENS = 1500
PARTIAL_CONFIDENCE = 50
MAX_SUGGESTED = 3
_CONTEXT_TAIL_CHARS = 1000


@dataclass(frozen=True)
class SubAgentBatch:
    results: tuple[SubAgentResult, ...]
    total_cost: float
    mean_confidence: float


def _sub_agent_id(request: SubAgentRequest, index: int) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", request.specialization.lower()).strip("-")[:30] or "research"
    return f"{request.parent_agent_id}-sub{index}-{slug}"


def _allowed_tools(ctx: StageContext, request: SubAgentRequest) -> tuple[str, ...]:
    depth_tools = get_tools_for_depth(ctx.depth)
    if request.tools_needed is None:
        return depth_tools
    return tuple(t for t in request.tools_needed if t in depth_tools)


async def spawn_sub_agent(ctx: StageContext, request: SubAgentRequest, index: int = 1) -> SubAgentResult:
    """Run one sub-agent to completion.

    Never raises except on cancellation. Hitting the iteration cap yields a
    confidence-50 result built from the accumulated context; any other failure
    yields a confidence-0 result describing the error.
    """
    sub_id = _sub_agent_id(request, index)
    allowed = _allowed_tools(ctx, request)
    tools_needed = (
        f"Prefer these tools: {', '.join(request.tools_needed)}" if request.tools_needed else ""
    )
    prompt = ctx.prompts.sub_agent.format(
        specialization=request.specialization,
        research_goal=request.research_goal,
        context=request.context or "(none)",
        tools=ctx.tools.prompt_description(allowed),
        tools_needed=tools_needed,
        max_iterations=request.max_iterations,
    )
    messages = [
        {"role": "system", "content": prompt},
        {"role": "user", "content": f"Begin research: {request.research_goal}"},
    ]

    start = time.monotonic()
    try:
        loop = await run_tool_loop(
            ctx,
            ctx.model_for("sub_agent"),
            messages,
            SUB_AGENT_TEMPERATURE,
            max_iterations=request.max_iterations,
            allowed_tools=allowed,
            max_tokens=SUB_AGENT_MAX_TOKENS,
        )
    except OperationCancelledError:
        raise
    except Exception as exc:
        logger.warning("Sub-agent %s failed: %s", sub_id, exc)
        return SubAgentResult(
            sub_agent_id=sub_id,
            specialization=request.specialization,
            findings=f"Sub-agent research failed: {exc}",
            confidence=0,
            tools_used=(),
            duration_sec=time.monotonic() - start,
            cost=0.0,
            tokens=0,
            iterations=0,
        )

    if loop.completed:
        findings, confidence = loop.findings, loop.confidence
    else:
        tail = (loop.transcript or loop.last_reply)[-_CONTEXT_TAIL_CHARS:]
        findings = (
            f"Research incomplete after {loop.iterations} iterations. "
            f"Last context: {tail or '(no context gathered)'}"
        )
        confidence = PARTIAL_CONFIDENCE

    logger.info(
        "Sub-agent %s: %d iterations, confidence %d, %d tool calls",
        sub_id,
        loop.iterations,
        confidence,
        len(loop.tools_used),
    )
    return SubAgentResult(
        sub_agent_id=sub_id,
        specialization=request.specialization,
        findings=findings,
        confidence=confidence,
        tools_used=loop.tools_used,
        duration_sec=time.monotonic() - start,
        cost=loop.cost,
        tokens=loop.tokens,
        iterations=loop.iterations,
    )


async def spawn_multiple_sub_agents(ctx: StageContext, requests: Sequence[SubAgentRequest]) -> SubAgentBatch:
    """Run sub-agents concurrently and aggregate total cost and mean confidence."""
    if not requests:
        return SubAgentBatch(results=(), total_cost=0.0, mean_confidence=0.0)

    jobs = {
        str(i): (lambda req=req, i=i: spawn_sub_agent(ctx, req, i))
        for i, req in enumerate(requests, start=1)
    }
    outcome = await fan_out(jobs)
    results = tuple(outcome.results[k] for k in jobs if k in outcome.results)
    total_cost = sum(r.cost for r in results)
    mean_confidence = sum(r.confidence for r in results) / len(results) if results else 0.0
    logger.info(
        "Sub-agent batch: %d/%d done, $%.4f, mean confidence %.0f",
        len(results),
        len(requests),
        total_cost,
        mean_confidence,
    )
    return SubAgentBatch(results=results, total_cost=total_cost, mean_confidence=mean_confidence)


async def suggest_sub_agents(
    ctx: StageContext,
    parent_agent_id: str,
    questions: Sequence[ResearchQuestion],
    findings: str,
) -> tuple[list[SubAgentRequest], float]:
    """Ask the model whether the research needs focused sub-agents. At most three.

    Returns (requests, detector cost). A failed or unparseable detector call means no sub-agents.
    """
    prompt = ctx.prompts.sub_agent_detect.format(
        question="; ".join(q.question for q in questions),
        findings=findings[:2000],
    )
    try:
        completion = await call_model(
            ctx,
            ctx.model_for("sub_agent"),
            [{"role": "user", "content": prompt}],
            temperature=0.3,
            max_tokens=800,
        )
    except OperationCancelledError:
        raise
    except Exception as exc:
        logger.warning("Sub-agent detection failed for %s: %s", parent_agent_id, exc)
        return [], 0.0

    data = extract_object(completion.content)
    if not data or data.get("needsSubAgents") is not True:
        return [], completion.cost

    requests: list[SubAgentRequest] = []
    for raw in data.get("subAgents") or []:
        if not isinstance(raw, dict):
            continue
        specialization = str(raw.get("specialization") or "").strip()
        goal = str(raw.get("researchGoal") or "").strip()
        if not specialization or not goal:
            continue
        tools = str_list(raw.get("toolsNeeded"))
        requests.append(
            SubAgentRequest(
                parent_agent_id=parent_agent_id,
                specialization=specialization,
                research_goal=goal,
                tools_needed=tools or None,
                context=findings[:_CONTEXT_TAIL_CHARS],
            )
        )
        if len(requests) >= MAX_SUGGESTED:
            break

    logger.debug("Detector suggested %d sub-agents for %s", len(requests), parent_agent_id)
    return requests, completion.cost
