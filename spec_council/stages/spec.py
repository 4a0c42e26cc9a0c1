"""Final document stage: generate the specification section by section."""

import asyncio
import logging
import time
from dataclasses import dataclass

from spec_council.context import StageContext, StageOutput, now_iso
from spec_council.errors import OperationCancelledError, StageFailedError
from spec_council.executor import call_model
from spec_council.models import DialogueEntry, Round, StageMetadata

logger = logging.getLogger(__name__)

SECTION_BATCH_SIZE = 3
SECTION_TEMPERATURE = 0.7

SECTION_SYSTEM_PROMPT = (
    "You are a principal software architect writing one section of a technical specification. "
    "Be specific: real names, types, paths and versions. Include working code where it helps. "
    "Output only the section content in Markdown, no preamble."
)


@dataclass(frozen=True)
class SpecSection:
    id: str
    title: str
    max_tokens: int
    prompt: str


SPEC_SECTIONS: tuple[SpecSection, ...] = (
    SpecSection("executive_summary", "1. Executive Summary", 1500,
                "Vision and value proposition, target users, key differentiators against named "
                "competitors, quantifiable success metrics, MVP scope and timeline."),
    SpecSection("requirements", "2. Core Requirements", 2500,
                "Functional requirements as user stories with Given/When/Then acceptance criteria, "
                "non-functional targets with numbers, P0/P1/P2 priorities, constraints, out of scope."),
    SpecSection("database", "3. Database Schema", 3000,
                "Complete SQL schema: tables, types, constraints, keys, indexes, timestamps, "
                "access policies, migration strategy and seed data."),
    SpecSection("api", "4. API Specification", 3500,
                "OpenAPI 3.1 YAML for every endpoint with request and response schemas, "
                "authentication, rate limits and error formats."),
    SpecSection("frontend", "5. Frontend Architecture", 2500,
                "Folder structure, component hierarchy, state management, routes, form validation."),
    SpecSection("backend", "6. Backend Architecture", 2000,
                "Folder structure, authentication flow, authorization, error handling, background jobs."),
    SpecSection("tech_stack", "7. Technology Stack", 1500,
                "Table of category, technology, exact version and reason, plus install commands."),
    SpecSection("environment", "8. Environment & Configuration", 1000,
                "Complete .env.example with where to obtain each value."),
    SpecSection("security", "9. Security Implementation", 1500,
                "OWASP Top 10 mitigations, input validation, rate limiting, secrets, security headers."),
    SpecSection("testing", "10. Testing Strategy", 1200,
                "Unit, integration and end-to-end tests with examples, fixtures, CI workflow."),
    SpecSection("deployment", "11. Deployment & DevOps", 1200,
                "Deployment steps, per-environment config, migrations, health checks, rollback, monitoring."),
)


def build_section_context(round_: Round) -> str:
    """Syntheses weighted by research depth, key requirements from votes, debate decisions."""
    research_tools = [len(r.tools_used) for r in round_.research]
    avg_tools = sum(research_tools) / len(research_tools) if research_tools else 0.0

    expert_parts = []
    for s in round_.syntheses:
        if avg_tools > 0:
            weight = min(s.research_quality.tools_used / avg_tools * 100, 100)
        else:
            weight = 100
        expert_parts.append(f"{s.agent_name} (research depth: {weight:.0f}%):\n{s.synthesis}")

    requirements = [req for v in round_.votes for req in v.key_requirements]
    decisions = [
        f"Decision: {d.resolution}"
        + (f"\nAdopted: {', '.join(d.adopted_alternatives)}" if d.adopted_alternatives else "")
        for d in round_.resolutions
    ]

    sections = ["EXPERT INSIGHTS:\n" + "\n\n".join(expert_parts)]
    if requirements:
        sections.append("KEY REQUIREMENTS:\n" + "\n".join(f"- {r}" for r in requirements))
    if decisions:
        sections.append("DECISIONS:\n" + "\n".join(decisions))
    if round_.user_comment:
        sections.append(f"USER GUIDANCE:\n{round_.user_comment}")
    return "\n\n".join(sections)


async def _generate_section(ctx: StageContext, section: SpecSection, context: str, model: str) -> tuple[str, float]:
    prompt = ctx.prompts.spec_section.format(
        user_input=ctx.user_input,
        context=context,
        section_title=section.title,
        section_prompt=section.prompt,
    )
    completion = await call_model(
        ctx,
        model,
        [{"role": "system", "content": SECTION_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
        temperature=SECTION_TEMPERATURE,
        max_tokens=section.max_tokens,
    )
    content = completion.content.strip()
    if not content:
        raise RuntimeError(f"empty content for section {section.id}")
    if not content.startswith("#"):
        content = f"## {section.title}\n\n{content}"
    return content, completion.cost


async def run_spec_stage(ctx: StageContext, round_: Round) -> StageOutput:
    """Generate every section in batches of three.

    A section that fails after retries becomes a placeholder; the stage fails
    only when every section fails.
    """
    if not round_.syntheses:
        raise StageFailedError("spec", round_.number, "no syntheses to build the document from")

    start = time.monotonic()
    model = ctx.model_for("spec")
    context = build_section_context(round_)

    contents: list[str] = []
    failed: list[str] = []
    cost = 0.0
    for i in range(0, len(SPEC_SECTIONS), SECTION_BATCH_SIZE):
        batch = SPEC_SECTIONS[i:i + SECTION_BATCH_SIZE]
        settled = await asyncio.gather(
            *(_generate_section(ctx, section, context, model) for section in batch),
            return_exceptions=True,
        )
        for section, result in zip(batch, settled):
            if isinstance(result, OperationCancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Section %s failed: %s", section.id, result)
                failed.append(section.id)
                contents.append(f"## {section.title}\n\n*Generation failed, regenerate this section.*")
            else:
                text, section_cost = result
                contents.append(text)
                cost += section_cost

    if len(failed) == len(SPEC_SECTIONS):
        raise StageFailedError("spec", round_.number, "every document section failed")

    document = "\n\n---\n\n".join(
        [
            "# Technical Specification\n\n"
            f"*Generated {now_iso()[:10]} from the consensus of {len(round_.syntheses)} expert advisors.*",
            *contents,
        ]
    )
    logger.info(
        "Round %d document: %d/%d sections in %.1fs",
        round_.number,
        len(SPEC_SECTIONS) - len(failed),
        len(SPEC_SECTIONS),
        time.monotonic() - start,
    )

    return StageOutput(
        updates={"document": document},
        metadata=StageMetadata(
            cost=cost,
            duration_sec=time.monotonic() - start,
            counts={"sections": len(SPEC_SECTIONS), "failed_sections": len(failed)},
        ),
        dialogue=(DialogueEntry("system", "Final specification generated.", now_iso()),),
        model=model,
    )
