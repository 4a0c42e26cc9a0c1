"""Agent executor: retried model calls and the tool-use loop shared by research and sub-agents."""

import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

from spec_council.context import StageContext
from spec_council.depth import get_tools_for_depth
from spec_council.models import AgentResearchResult, Completion, ExpertAssignment, ToolUse
from spec_council.parsing import CompletionSignal, ToolCall, Unparseable, parse_agent_reply
from spec_council.retry import run_cancellable, with_retry

logger = logging.getLogger(__name__)

NUDGE = (
    "Your last reply was neither a tool call nor a completion. Either use a tool with "
    '{"tool": "name", "params": {...}} or finish with '
    '{"complete": true, "confidence": 0-100, "findings": "..."}.'
)

_MAX_TOOL_OUTPUT_CHARS = 4000


async def call_model(
    ctx: StageContext,
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_tokens: int | None = None,
) -> Completion:
    """One completion call, retried with backoff and abandoned on cancellation."""
    return await with_retry(
        lambda: run_cancellable(ctx.service.complete(model, messages, temperature, max_tokens), ctx.token),
        ctx.retry_options(),
    )


@dataclass(frozen=True)
class ToolLoopResult:
    completed: bool
    findings: str
    confidence: int
    tools_used: tuple[ToolUse, ...]
    cost: float
    tokens: int
    iterations: int
    transcript: str          # accumulated assistant/tool context, for partial results
    last_reply: str


def _format_tool_output(name: str, success: bool, data: object, error: str | None) -> str:
    if success:
        body = json.dumps(data, default=str, ensure_ascii=False)
    else:
        body = f"ERROR: {error}"
    if len(body) > _MAX_TOOL_OUTPUT_CHARS:
        body = body[:_MAX_TOOL_OUTPUT_CHARS] + "... [truncated]"
    return f"Tool result ({name}): {body}"


async def run_tool_loop(
    ctx: StageContext,
    model: str,
    messages: list[dict[str, str]],
    temperature: float,
    max_iterations: int,
    allowed_tools: Iterable[str] | None = None,
    max_tokens: int | None = None,
) -> ToolLoopResult:
    """Call the model until it signals completion or `max_iterations` calls have been made.

    Each reply is parsed into ToolCall, CompletionSignal or Unparseable. Tool calls
    run through the registry and their output is appended to the conversation;
    unparseable replies get a nudge. Model call failures (after retries) propagate.
    """
    conversation = list(messages)
    allowed = list(allowed_tools) if allowed_tools is not None else None
    tools_used: list[ToolUse] = []
    context_parts: list[str] = []
    cost = 0.0
    tokens = 0
    last_reply = ""

    for iteration in range(1, max_iterations + 1):
        completion = await call_model(ctx, model, conversation, temperature, max_tokens)
        cost += completion.cost
        tokens += completion.total_tokens
        last_reply = completion.content
        conversation.append({"role": "assistant", "content": completion.content})

        reply = parse_agent_reply(completion.content)
        if isinstance(reply, CompletionSignal):
            return ToolLoopResult(
                completed=True,
                findings=reply.findings,
                confidence=reply.confidence,
                tools_used=tuple(tools_used),
                cost=cost,
                tokens=tokens,
                iterations=iteration,
                transcript="\n\n".join(context_parts),
                last_reply=last_reply,
            )

        if isinstance(reply, ToolCall):
            result = await run_cancellable(ctx.tools.execute(reply.tool, reply.params, allowed), ctx.token)
            tools_used.append(ToolUse(tool=reply.tool, success=result.success, duration_sec=result.duration_sec))
            observation = _format_tool_output(reply.tool, result.success, result.data, result.error)
            context_parts.append(observation)
            conversation.append({"role": "user", "content": observation})
            logger.debug("Iteration %d: tool %s success=%s", iteration, reply.tool, result.success)
        elif isinstance(reply, Unparseable):
            context_parts.append(completion.content)
            conversation.append({"role": "user", "content": NUDGE})
            logger.debug("Iteration %d: unparseable reply (%s)", iteration, reply.reason)

    return ToolLoopResult(
        completed=False,
        findings="",
        confidence=0,
        tools_used=tuple(tools_used),
        cost=cost,
        tokens=tokens,
        iterations=max_iterations,
        transcript="\n\n".join(context_parts),
        last_reply=last_reply,
    )


def format_questions(assignment: ExpertAssignment) -> str:
    return "\n".join(
        f"{i}. [{q.domain}, priority {q.priority}] {q.question}"
        for i, q in enumerate(assignment.questions, start=1)
    )


async def execute_research_agent(ctx: StageContext, assignment: ExpertAssignment) -> AgentResearchResult:
    """Research one expert's assigned questions with a depth-bounded tool loop.

    Raises:
        Exception: The model error after retries are exhausted. The fan-out records it.
    """
    agent = ctx.agent(assignment.agent_id)
    persona = agent.instructions if agent else ""
    temperature = agent.temperature if agent else 0.7
    allowed = get_tools_for_depth(ctx.depth)

    prompt = ctx.prompts.research.format(
        persona=persona,
        agent_name=assignment.agent_name,
        questions=format_questions(assignment),
        tools=ctx.tools.prompt_description(allowed),
    )
    messages = [
        {"role": "system", "content": persona},
        {"role": "user", "content": f"Product idea: {ctx.user_input}\n\n{prompt}"},
    ]

    start = time.monotonic()
    loop = await run_tool_loop(
        ctx,
        assignment.model,
        messages,
        temperature,
        max_iterations=ctx.depth.max_iterations,
        allowed_tools=allowed,
    )
    duration = time.monotonic() - start

    if loop.completed:
        findings = loop.findings
    else:
        # No completion signal: keep whatever the agent last said rather than failing.
        findings = loop.transcript or loop.last_reply.strip()
        logger.info(
            "Research agent %s hit %d iterations without completing",
            assignment.agent_id,
            loop.iterations,
        )

    logger.info(
        "Research %s: %.1fs, %d tool calls, $%.4f",
        assignment.agent_id,
        duration,
        len(loop.tools_used),
        loop.cost,
    )

    return AgentResearchResult(
        agent_id=assignment.agent_id,
        agent_name=assignment.agent_name,
        questions=assignment.questions,
        findings=findings,
        tools_used=loop.tools_used,
        duration_sec=duration,
        model=assignment.model,
        cost=loop.cost,
        tokens=loop.tokens,
    )
