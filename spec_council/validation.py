"""Caller input validation. Failures raise InputValidationError and are never retried."""

import re
from collections.abc import Sequence

from spec_council.errors import InputValidationError
from spec_council.models import AgentConfig

PROMPT_MIN_CHARS = 10
PROMPT_MAX_CHARS = 5000
COMMENT_MAX_CHARS = 1000
AGENT_NAME_MAX_CHARS = 50
AGENT_INSTRUCTIONS_MAX_CHARS = 2000

# Control characters except tab, newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def validate_prompt(text: str) -> str:
    """Return the cleaned prompt: control characters removed, whitespace stripped."""
    cleaned = _CONTROL_CHARS.sub("", text or "").strip()
    if len(cleaned) < PROMPT_MIN_CHARS:
        raise InputValidationError(
            "prompt_too_short", f"Prompt must be at least {PROMPT_MIN_CHARS} characters"
        )
    if len(cleaned) > PROMPT_MAX_CHARS:
        raise InputValidationError(
            "prompt_too_long", f"Prompt must be at most {PROMPT_MAX_CHARS} characters"
        )
    return cleaned


def validate_comment(comment: str | None) -> str | None:
    """Return the cleaned comment, or None when it is empty."""
    if comment is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", comment).strip()
    if len(cleaned) > COMMENT_MAX_CHARS:
        raise InputValidationError(
            "comment_too_long", f"Comment must be at most {COMMENT_MAX_CHARS} characters"
        )
    return cleaned or None


def validate_agent(agent: AgentConfig) -> None:
    for label, value in (("id", agent.id), ("name", agent.name)):
        if not value or len(value) > AGENT_NAME_MAX_CHARS:
            raise InputValidationError(
                "invalid_agent", f"Agent {label} must be 1-{AGENT_NAME_MAX_CHARS} characters: {value!r}"
            )
    if not agent.instructions or len(agent.instructions) > AGENT_INSTRUCTIONS_MAX_CHARS:
        raise InputValidationError(
            "invalid_agent",
            f"Agent {agent.id} instructions must be 1-{AGENT_INSTRUCTIONS_MAX_CHARS} characters",
        )
    if not 0.0 <= agent.temperature <= 1.0:
        raise InputValidationError(
            "invalid_agent", f"Agent {agent.id} temperature must be within [0, 1], got {agent.temperature}"
        )


def validate_agents(agents: Sequence[AgentConfig]) -> list[AgentConfig]:
    """Validate every agent and return the enabled ones, in order."""
    seen: set[str] = set()
    for agent in agents:
        validate_agent(agent)
        if agent.id in seen:
            raise InputValidationError("invalid_agent", f"Duplicate agent id: {agent.id}")
        seen.add(agent.id)

    enabled = [a for a in agents if a.enabled]
    if not enabled:
        raise InputValidationError("no_agents", "At least one agent must be enabled")
    return enabled
