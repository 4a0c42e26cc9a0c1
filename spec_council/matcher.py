"""Match research questions to the experts best placed to answer them."""

import logging
from collections.abc import Sequence
from dataclasses import replace

from config.config_loader import RoutingConfig
from spec_council.models import AgentConfig, ExpertAssignment, ResearchQuestion

logger = logging.getLogger(__name__)

_HIGH_PRIORITY = 8          # questions at or above this go to two experts
_REQUIRED_BONUS = 15.0
_MOVABLE_PRIORITY = 7       # balance_workload only moves questions below this


def score_agent(
    question: ResearchQuestion,
    agent_id: str,
    expertise: dict[str, dict[str, float]],
) -> float:
    score = expertise.get(question.domain, {}).get(agent_id, 0.0) * 2
    if agent_id in question.required_expertise:
        score += _REQUIRED_BONUS
    return score + question.priority / 2


def assign_questions_to_experts(
    questions: Sequence[ResearchQuestion],
    agents: Sequence[AgentConfig],
    expertise: dict[str, dict[str, float]],
    routing: RoutingConfig,
) -> tuple[ExpertAssignment, ...]:
    """Give each question to its best-scoring expert (two experts for priority >= 8).

    Every agent ends up with at least one question: an agent nobody picked gets
    the question it scores highest on. Ties go to the earlier agent in `agents`.
    """
    if not agents:
        return ()

    by_agent: dict[str, list[ResearchQuestion]] = {a.id: [] for a in agents}
    for question in questions:
        ranked = sorted(agents, key=lambda a: -score_agent(question, a.id, expertise))
        take = 2 if question.priority >= _HIGH_PRIORITY else 1
        for agent in ranked[:take]:
            by_agent[agent.id].append(question)

    if questions:
        for agent in agents:
            if not by_agent[agent.id]:
                best = max(questions, key=lambda q: score_agent(q, agent.id, expertise))
                by_agent[agent.id].append(best)

    assignments = tuple(
        ExpertAssignment(
            agent_id=agent.id,
            agent_name=agent.name,
            model=routing.for_agent(agent.id),
            questions=tuple(by_agent[agent.id]),
        )
        for agent in agents
        if by_agent[agent.id]
    )
    logger.debug(
        "Assigned %d questions: %s",
        len(questions),
        {a.agent_id: len(a.questions) for a in assignments},
    )
    return assignments


def balance_workload(assignments: Sequence[ExpertAssignment]) -> tuple[ExpertAssignment, ...]:
    """Move low-priority questions from overloaded experts to underloaded ones.

    Only kicks in when the busiest expert has more than twice the mean load.
    An expert is overloaded above 1.5x the mean and underloaded below the mean.
    """
    if len(assignments) < 2:
        return tuple(assignments)

    loads = {a.agent_id: list(a.questions) for a in assignments}
    mean = sum(len(q) for q in loads.values()) / len(loads)
    if mean == 0 or max(len(q) for q in loads.values()) <= 2 * mean:
        return tuple(assignments)

    for agent_id, questions in loads.items():
        if len(questions) <= 1.5 * mean:
            continue
        for question in sorted(questions, key=lambda q: q.priority):
            if question.priority >= _MOVABLE_PRIORITY or len(questions) <= mean:
                break
            target = min(
                (k for k, v in loads.items() if k != agent_id and len(v) < mean and question not in v),
                key=lambda k: len(loads[k]),
                default=None,
            )
            if target is None:
                break
            questions.remove(question)
            loads[target].append(question)
            logger.debug("Moved question %s from %s to %s", question.id, agent_id, target)

    return tuple(replace(a, questions=tuple(loads[a.agent_id])) for a in assignments)
