"""Quality review gate: one reviewer call over all syntheses. Advisory only.

A review passes when the score is at least 70 and no critical issue was found.
A failed review never blocks the pipeline; voting sees it and decides.
"""

import logging
import time
from collections.abc import Sequence

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.errors import StageFailedError
from spec_council.executor import call_model
from spec_council.models import (
    AgentResearchResult,
    CitationAnalysis,
    DialogueEntry,
    ExpertCoverage,
    ExpertSynthesis,
    ReviewIssue,
    ReviewResult,
    Round,
    StageMetadata,
)
from spec_council.parsing import clamp_int, extract_object, str_list

logger = logging.getLogger(__name__)

PASS_SCORE = 70
FALLBACK_SCORE = 60

_SEVERITIES = ("critical", "major", "minor")
_CATEGORIES = ("accuracy", "completeness", "citation", "feasibility", "consistency")

FACT_CHECK_INSTRUCTION = (
    "Verify every factual claim and citation; count total, verified and missing citations per expert."
)
NO_FACT_CHECK_INSTRUCTION = "Skip citation verification and report zero citation counts."


def review_passed(score: int, issues: Sequence[ReviewIssue]) -> bool:
    return score >= PASS_SCORE and not any(i.severity == "critical" for i in issues)


def _format_for_review(syntheses: Sequence[ExpertSynthesis], research: Sequence[AgentResearchResult]) -> str:
    by_agent = {r.agent_id: r for r in research}
    parts = []
    for s in syntheses:
        part = f"## {s.agent_name} ({s.agent_id})\n{s.synthesis}"
        source = by_agent.get(s.agent_id)
        if source is not None:
            part += f"\n\n### Underlying research\n{source.findings[:1500]}"
        parts.append(part)
    return "\n\n".join(parts)


def _parse_issue(raw: dict) -> ReviewIssue | None:
    description = str(raw.get("description") or "").strip()
    if not description:
        return None
    severity = str(raw.get("severity") or "").lower()
    category = str(raw.get("category") or "").lower()
    return ReviewIssue(
        severity=severity if severity in _SEVERITIES else "minor",
        category=category if category in _CATEGORIES else "completeness",
        description=description,
        remediation=str(raw.get("remediation") or "").strip(),
        affected_agent=str(raw["affectedExpert"]) if raw.get("affectedExpert") else None,
    )


def _parse_citations(raw: object) -> CitationAnalysis:
    if not isinstance(raw, dict):
        return CitationAnalysis()
    coverage = {}
    for agent_id, value in (raw.get("expertCoverage") or {}).items():
        if isinstance(value, dict):
            coverage[str(agent_id)] = ExpertCoverage(
                citations=clamp_int(value.get("citations"), 0, 10_000, 0),
                verified=bool(value.get("verified", False)),
            )
    return CitationAnalysis(
        total_citations=clamp_int(raw.get("totalCitations"), 0, 10_000, 0),
        verified_citations=clamp_int(raw.get("verifiedCitations"), 0, 10_000, 0),
        missing_citations=clamp_int(raw.get("missingCitations"), 0, 10_000, 0),
        expert_coverage=coverage,
    )


def fallback_review(syntheses: Sequence[ExpertSynthesis], model: str) -> ReviewResult:
    """Conservative result used when the reviewer reply cannot be parsed."""
    return ReviewResult(
        overall_score=FALLBACK_SCORE,
        passed=False,
        issues=(
            ReviewIssue(
                severity="major",
                category="accuracy",
                description="Automated review could not be parsed; findings are unverified.",
                remediation="Re-run the review or check the expert syntheses manually.",
            ),
        ),
        recommendations=("Verify key claims manually before relying on the specification.",),
        citation_analysis=CitationAnalysis(missing_citations=len(syntheses)),
        model=model,
        timestamp=now_iso(),
    )


def parse_review(text: str, syntheses: Sequence[ExpertSynthesis], model: str, fact_checking: bool) -> ReviewResult:
    data = extract_object(text)
    if data is None or "overallScore" not in data:
        logger.warning("Review reply unparseable, using fallback review")
        return fallback_review(syntheses, model)

    score = clamp_int(data.get("overallScore"), 0, 100, FALLBACK_SCORE)
    issues = tuple(
        issue
        for issue in (_parse_issue(raw) for raw in data.get("issues") or [] if isinstance(raw, dict))
        if issue is not None
    )
    return ReviewResult(
        overall_score=score,
        passed=review_passed(score, issues),
        issues=issues,
        recommendations=str_list(data.get("recommendations")),
        citation_analysis=_parse_citations(data.get("citationAnalysis")) if fact_checking else CitationAnalysis(),
        model=model,
        timestamp=now_iso(),
    )


async def run_review_stage(ctx: StageContext, round_: Round) -> StageOutput:
    if not round_.syntheses:
        raise StageFailedError("review", round_.number, "no syntheses to review")

    start = time.monotonic()
    fact_checking = ctx.depth.enable_fact_checking
    prompt = ctx.prompts.review.format(
        fact_check=FACT_CHECK_INSTRUCTION if fact_checking else NO_FACT_CHECK_INSTRUCTION,
        syntheses=_format_for_review(round_.syntheses, round_.research),
    )
    model = ctx.model_for("review")
    completion = await call_model(ctx, model, [{"role": "user", "content": prompt}], temperature=0.2)
    review = parse_review(completion.content, round_.syntheses, completion.model, fact_checking)

    critical = sum(1 for i in review.issues if i.severity == "critical")
    logger.info(
        "Round %d review: score %d, %s, %d issues (%d critical)",
        round_.number,
        review.overall_score,
        "passed" if review.passed else "failed",
        len(review.issues),
        critical,
    )

    verdict = "passed" if review.passed else "did not pass"
    return StageOutput(
        updates={"review": review},
        metadata=StageMetadata(
            cost=completion.cost,
            duration_sec=time.monotonic() - start,
            counts={
                "score": review.overall_score,
                "passed": int(review.passed),
                "issues": len(review.issues),
                "critical": critical,
            },
        ),
        dialogue=(
            DialogueEntry("system", f"Quality review {verdict} with score {review.overall_score}/100.", now_iso()),
        ),
        model=model,
    )
