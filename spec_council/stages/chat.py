"""Follow-up chat with one expert after (or between) pipeline runs."""

import logging
from collections.abc import Sequence

from spec_council.context import StageContext
from spec_council.errors import InputValidationError
from spec_council.executor import call_model
from spec_council.models import Completion, DialogueEntry

logger = logging.getLogger(__name__)

CHAT_MAX_TOKENS = 500
_HISTORY_TURNS = 10
_DOCUMENT_EXCERPT_CHARS = 3000


async def run_chat_turn(
    ctx: StageContext,
    agent_id: str,
    message: str,
    history: Sequence[DialogueEntry] = (),
    document: str | None = None,
) -> Completion:
    """One short answer from `agent_id` in its persona.

    Only earlier chat turns between the user and this agent are replayed.
    """
    agent = ctx.agent(agent_id)
    if agent is None:
        raise InputValidationError("invalid_agent", f"Unknown agent: {agent_id}")

    system = ctx.prompts.chat.format(persona=agent.instructions)
    if document:
        system += f"\n\nSpecification excerpt:\n{document[:_DOCUMENT_EXCERPT_CHARS]}"

    messages = [{"role": "system", "content": system}]
    turns = [
        e for e in history
        if e.kind == "chat" and (e.speaker == agent_id or (e.speaker == "user" and e.target == agent_id))
    ]
    for entry in turns[-_HISTORY_TURNS:]:
        role = "assistant" if entry.speaker == agent_id else "user"
        messages.append({"role": role, "content": entry.message})
    messages.append({"role": "user", "content": message})

    completion = await call_model(
        ctx, ctx.model_for("chat"), messages, temperature=agent.temperature, max_tokens=CHAT_MAX_TOKENS
    )
    logger.debug("Chat with %s: %d tokens", agent_id, completion.total_tokens)
    return completion
