"""Challenge/debate: adversarial questions against research, rebuttals, and resolutions."""

import logging
from collections.abc import Sequence

from spec_council.context import StageContext
from spec_council.executor import call_model
from spec_council.fanout import FanOutResult, fan_out
from spec_council.models import AgentResearchResult, ChallengeQuestion, ChallengeResponse, DebateResolution
from spec_council.parsing import clamp_int, extract_json, extract_object, str_list

logger = logging.getLogger(__name__)

CHALLENGES_PER_FINDING = 2
GENERAL_TARGET = "general"

_CHALLENGE_TYPES = ("feasibility", "risk", "alternative", "assumption", "vision", "cost")
_FINDING_EXCERPT_CHARS = 1500

# Used when the generator reply cannot be parsed.
_FALLBACK_CHALLENGES = (
    ("feasibility", "Can {name}'s recommendation actually be built with the stated resources and timeline?"),
    ("risk", "What is the biggest way {name}'s recommendation could fail in production?"),
)


def _format_findings(research: Sequence[AgentResearchResult]) -> str:
    return "\n\n".join(
        f"[{i}] {r.agent_name}: {r.findings[:_FINDING_EXCERPT_CHARS]}"
        for i, r in enumerate(research)
    )


def assign_challenger(
    challenge_type: str,
    target_agent_id: str,
    panel: Sequence[str],
    challengers: dict[str, list[str]],
) -> str:
    """Pick who argues the challenge: first configured challenger on the panel who is not the target.

    Falls back to any other panel member, then to the target itself for a one-agent panel.
    """
    for candidate in challengers.get(challenge_type, []):
        if candidate in panel and candidate != target_agent_id:
            return candidate
    for candidate in panel:
        if candidate != target_agent_id:
            return candidate
    return target_agent_id


def _target_of(index: object, research: Sequence[AgentResearchResult]) -> str:
    """Agent behind the finding at `index`; anything that is not a valid index is general."""
    if isinstance(index, bool) or not isinstance(index, (int, str)):
        return GENERAL_TARGET
    try:
        position = int(index)
    except ValueError:
        return GENERAL_TARGET
    if 0 <= position < len(research):
        return research[position].agent_id
    return GENERAL_TARGET


def _fallback_challenges(ctx: StageContext, research: Sequence[AgentResearchResult]) -> list[ChallengeQuestion]:
    panel = ctx.agent_ids()
    challenges: list[ChallengeQuestion] = []
    for result in research:
        for challenge_type, template in _FALLBACK_CHALLENGES:
            challenges.append(
                ChallengeQuestion(
                    id=f"c{len(challenges) + 1}",
                    type=challenge_type,
                    question=template.format(name=result.agent_name),
                    target_agent_id=result.agent_id,
                    challenger=assign_challenger(challenge_type, result.agent_id, panel, ctx.challengers),
                    priority=5,
                )
            )
    return challenges


async def generate_challenges(
    ctx: StageContext,
    research: Sequence[AgentResearchResult],
) -> tuple[tuple[ChallengeQuestion, ...], float]:
    """Generate challenge questions against the research findings.

    Returns (challenges, cost). An unparseable reply falls back to two generic
    challenges per finding.
    """
    if not research:
        return (), 0.0

    count = CHALLENGES_PER_FINDING * len(research)
    prompt = ctx.prompts.challenge_generate.format(
        user_input=ctx.user_input,
        findings=_format_findings(research),
        count=count,
    )
    completion = await call_model(
        ctx, ctx.model_for("challenge"), [{"role": "user", "content": prompt}], temperature=0.8
    )

    data = extract_json(completion.content)
    raw_items = data.get("challenges") if isinstance(data, dict) else data
    if not isinstance(raw_items, list):
        logger.warning("Challenge generation reply unparseable, using generic challenges")
        return tuple(_fallback_challenges(ctx, research)), completion.cost

    panel = ctx.agent_ids()
    challenges: list[ChallengeQuestion] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        question = str(raw.get("question") or "").strip()
        if not question:
            continue
        challenge_type = raw.get("type") if raw.get("type") in _CHALLENGE_TYPES else "assumption"
        target = _target_of(raw.get("targetFindingIndex"), research)
        challenges.append(
            ChallengeQuestion(
                id=f"c{len(challenges) + 1}",
                type=challenge_type,
                question=question,
                target_agent_id=target,
                challenger=assign_challenger(challenge_type, target, panel, ctx.challengers),
                priority=clamp_int(raw.get("priority"), 1, 10, 5),
            )
        )
        if len(challenges) >= count:
            break

    if not challenges:
        return tuple(_fallback_challenges(ctx, research)), completion.cost
    return tuple(challenges), completion.cost


async def _respond(
    ctx: StageContext,
    challenge: ChallengeQuestion,
    research: Sequence[AgentResearchResult],
) -> ChallengeResponse:
    challenger = ctx.agent(challenge.challenger)
    challenger_name = challenger.name if challenger else challenge.challenger
    target = next((r for r in research if r.agent_id == challenge.target_agent_id), None)
    findings = target.findings[:_FINDING_EXCERPT_CHARS] if target else _format_findings(research)

    prompt = ctx.prompts.challenge_respond.format(
        challenger_name=challenger_name,
        question=challenge.question,
        findings=findings,
    )
    messages = [{"role": "user", "content": prompt}]
    if challenger:
        messages.insert(0, {"role": "system", "content": challenger.instructions})

    model = ctx.model_for_agent(challenge.challenger)
    completion = await call_model(
        ctx, model, messages, temperature=challenger.temperature if challenger else 0.8
    )

    data = extract_object(completion.content) or {}
    argument = str(data.get("challenge") or "").strip() or completion.content.strip()
    alternative = str(data.get("alternativeApproach") or "").strip() or None
    return ChallengeResponse(
        challenge_id=challenge.id,
        challenger=challenge.challenger,
        challenge=argument,
        evidence_against=str_list(data.get("evidenceAgainst")),
        risk_score=clamp_int(data.get("riskScore"), 0, 10, 5),
        model=completion.model,
        cost=completion.cost,
        alternative_approach=alternative,
    )


async def execute_challenges(
    ctx: StageContext,
    challenges: Sequence[ChallengeQuestion],
    research: Sequence[AgentResearchResult],
) -> FanOutResult[ChallengeResponse]:
    """Collect a rebuttal for every challenge concurrently, keyed by challenge id."""
    return await fan_out(
        {c.id: (lambda c=c: _respond(ctx, c, research)) for c in challenges}
    )


def _format_challenges(pairs: Sequence[tuple[ChallengeQuestion, ChallengeResponse]]) -> str:
    lines = []
    for challenge, response in pairs:
        lines.append(f"- [{challenge.type}, risk {response.risk_score}/10] {challenge.question}")
        lines.append(f"  Counter-argument: {response.challenge}")
        for evidence in response.evidence_against:
            lines.append(f"  Evidence: {evidence}")
        if response.alternative_approach:
            lines.append(f"  Alternative: {response.alternative_approach}")
    return "\n".join(lines)


async def _resolve_one(
    ctx: StageContext,
    position: AgentResearchResult,
    pairs: Sequence[tuple[ChallengeQuestion, ChallengeResponse]],
) -> tuple[DebateResolution, float]:
    prompt = ctx.prompts.resolution.format(
        position=position.findings[:_FINDING_EXCERPT_CHARS],
        challenges=_format_challenges(pairs),
    )
    completion = await call_model(
        ctx, ctx.model_for("resolution"), [{"role": "user", "content": prompt}], temperature=0.5
    )
    data = extract_object(completion.content) or {}
    resolution = str(data.get("resolution") or "").strip() or completion.content.strip()
    adopted = str_list(data.get("adoptedAlternatives"))
    return (
        DebateResolution(
            agent_id=position.agent_id,
            original_position=position.findings[:_FINDING_EXCERPT_CHARS],
            challenges=tuple(response.challenge for _, response in pairs),
            resolution=resolution,
            confidence_change=clamp_int(data.get("confidenceChange"), -100, 100, 0),
            adopted_alternatives=adopted,
        ),
        completion.cost,
    )


async def resolve_debates(
    ctx: StageContext,
    challenges: Sequence[ChallengeQuestion],
    responses: Sequence[ChallengeResponse],
    research: Sequence[AgentResearchResult],
) -> FanOutResult[tuple[DebateResolution, float]]:
    """Group rebuttals by the position they attack and reduce each group to one resolution.

    Challenges aimed at no particular finding are not resolved.
    """
    by_id = {c.id: c for c in challenges}
    groups: dict[str, list[tuple[ChallengeQuestion, ChallengeResponse]]] = {}
    for response in responses:
        challenge = by_id.get(response.challenge_id)
        if challenge is None or challenge.target_agent_id == GENERAL_TARGET:
            continue
        groups.setdefault(challenge.target_agent_id, []).append((challenge, response))

    positions = {r.agent_id: r for r in research}
    jobs = {
        agent_id: (lambda agent_id=agent_id, pairs=pairs: _resolve_one(ctx, positions[agent_id], pairs))
        for agent_id, pairs in groups.items()
        if agent_id in positions
    }
    return await fan_out(jobs)
