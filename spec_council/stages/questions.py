"""Questions stage: generate research questions and assign them to experts."""

import logging
import time

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.executor import call_model
from spec_council.matcher import assign_questions_to_experts, balance_workload
from spec_council.models import DialogueEntry, ResearchQuestion, Round, StageMetadata
from spec_council.parsing import clamp_int, extract_json, str_list

logger = logging.getLogger(__name__)

_DOMAINS = ("technical", "design", "market", "legal", "growth", "security")

GENERIC_QUESTIONS: tuple[ResearchQuestion, ...] = (
    ResearchQuestion("q1", "What architecture and technology stack best fits this product?", "technical", 9),
    ResearchQuestion("q2", "What user experience and interface design will make this product succeed?", "design", 8),
    ResearchQuestion("q3", "Who are the main competitors and what is the market opportunity?", "market", 7),
    ResearchQuestion("q4", "What legal, privacy and compliance requirements apply?", "legal", 6),
    ResearchQuestion("q5", "How will the product acquire and retain users?", "growth", 6),
    ResearchQuestion("q6", "What are the main security threats and how are they mitigated?", "security", 7),
)


def parse_questions(text: str, panel: list[str], limit: int) -> list[ResearchQuestion]:
    """Parse a questions reply. Accepts {"questions": [...]} or a bare list."""
    data = extract_json(text)
    items = data.get("questions") if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    questions: list[ResearchQuestion] = []
    for raw in items:
        if not isinstance(raw, dict):
            continue
        text_ = str(raw.get("question") or "").strip()
        if not text_:
            continue
        domain = str(raw.get("domain") or "").lower()
        questions.append(
            ResearchQuestion(
                id=str(raw.get("id") or f"q{len(questions) + 1}"),
                question=text_,
                domain=domain if domain in _DOMAINS else "technical",
                priority=clamp_int(raw.get("priority"), 1, 10, 5),
                required_expertise=tuple(
                    a for a in str_list(raw.get("requiredExpertise")) if a in panel
                ),
            )
        )
        if len(questions) >= limit:
            break
    return questions


async def run_questions_stage(ctx: StageContext, round_: Round) -> StageOutput:
    start = time.monotonic()
    panel = ctx.agent_ids()
    count = ctx.depth.question_count
    comment = f"User guidance: {round_.user_comment}" if round_.user_comment else ""

    prompt = ctx.prompts.questions.format(
        user_input=ctx.user_input,
        comment=comment,
        count=count,
        agent_ids=", ".join(panel),
    )
    model = ctx.model_for("questions")
    completion = await call_model(ctx, model, [{"role": "user", "content": prompt}], temperature=0.7)

    questions = parse_questions(completion.content, panel, count)
    used_fallback = not questions
    if used_fallback:
        logger.warning("Question generation reply unparseable, using generic questions")
        questions = list(GENERIC_QUESTIONS[:count])

    assignments = balance_workload(
        assign_questions_to_experts(questions, ctx.agents, ctx.expertise, ctx.routing)
    )
    logger.info("Round %d: %d questions for %d experts", round_.number, len(questions), len(assignments))

    summary = "\n".join(f"- [{q.domain}] {q.question}" for q in questions)
    return StageOutput(
        updates={"questions": tuple(questions), "assignments": assignments},
        metadata=StageMetadata(
            cost=completion.cost,
            duration_sec=time.monotonic() - start,
            counts={
                "questions": len(questions),
                "assignments": len(assignments),
                "fallback": int(used_fallback),
            },
        ),
        dialogue=(DialogueEntry("system", f"Research questions:\n{summary}", now_iso()),),
        model=model,
    )
