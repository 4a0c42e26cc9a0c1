"""Stage sequencer: the per-session state machine.

Stages run in a fixed order, one per explicit `run_next_stage()` call:

    questions -> research -> challenge -> synthesis -> review -> voting -> spec -> complete

After voting the consensus policy either advances to `spec` or closes the
round and opens a new one at `questions`, carrying the user comment forward.
Rounds are immutable values; the session replaces the current round with the
handler's output folded in.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace

from config.config_loader import AppConfig, PromptsConfig, RoutingConfig
from spec_council.consensus import ConsensusPolicy, approval_rate
from spec_council.context import CompletionService, StageContext, StageOutput, now_iso
from spec_council.depth import (
    AgentRanking,
    DepthConfig,
    filter_agents_for_depth,
    get_depth_config,
    priority_ranking,
    recommend_depth,
)
from spec_council.errors import InputValidationError, OperationCancelledError, SessionStateError, StageFailedError
from spec_council.models import STAGE_ORDER, AgentConfig, DialogueEntry, Round
from spec_council.retry import CancellationToken, RetryOptions
from spec_council.snapshot import SessionSnapshot
from spec_council.stages.challenge import run_challenge_stage
from spec_council.stages.chat import run_chat_turn
from spec_council.stages.questions import run_questions_stage
from spec_council.stages.research import run_research_stage
from spec_council.stages.review import run_review_stage
from spec_council.stages.spec import run_spec_stage
from spec_council.stages.synthesis import run_synthesis_stage
from spec_council.stages.voting import run_voting_stage
from spec_council.tools.registry import ToolRegistry
from spec_council.trace import NullTraceSink, TraceSink
from spec_council.validation import validate_agents, validate_comment, validate_prompt

logger = logging.getLogger(__name__)

StageHandler = Callable[[StageContext, Round], Awaitable[StageOutput]]

STAGE_HANDLERS: dict[str, StageHandler] = {
    "questions": run_questions_stage,
    "research": run_research_stage,
    "challenge": run_challenge_stage,
    "synthesis": run_synthesis_stage,
    "review": run_review_stage,
    "voting": run_voting_stage,
    "spec": run_spec_stage,
}

DEFAULT_STAGE_TIMEOUT_SEC = 1800.0
DEFAULT_CHAT_TIMEOUT_SEC = 120.0


def next_stage(stage: str) -> str | None:
    """Immediate successor in the fixed order; None for `complete`."""
    index = STAGE_ORDER.index(stage)
    if index + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[index + 1]


def _resolve_depth(depth: str | DepthConfig, user_input: str) -> DepthConfig:
    if isinstance(depth, DepthConfig):
        return depth
    if depth == "auto":
        return get_depth_config(recommend_depth(user_input))
    try:
        return get_depth_config(depth)
    except KeyError:
        raise InputValidationError("invalid_depth", f"Unknown depth profile: {depth}") from None


def session_options(config: AppConfig) -> dict:
    """PipelineSession keyword arguments derived from the loaded settings."""
    retry_cfg = config.retry
    return {
        "prompts": config.prompts,
        "routing": config.routing,
        "expertise": config.expertise,
        "challengers": config.challengers,
        "retry": RetryOptions(
            max_retries=retry_cfg.max_retries,
            initial_delay=retry_cfg.initial_delay_sec,
            max_delay=retry_cfg.max_delay_sec,
            multiplier=retry_cfg.multiplier,
            jitter=retry_cfg.jitter,
        ),
        "ranking": priority_ranking(config.defaults.agent_priority),
        "policy": ConsensusPolicy(
            threshold=config.defaults.approval_threshold,
            max_rounds=config.defaults.max_rounds,
        ),
        "stage_timeout_sec": config.defaults.stage_timeout_sec,
        "chat_timeout_sec": config.defaults.chat_timeout_sec,
    }


class PipelineSession:
    """One spec-generation session: owns the rounds, dialogue and pause state.

    Args:
        user_input: The product idea. Validated and cleaned.
        agents: Every configured agent; the enabled ones are validated and
            filtered to the depth profile's width using `ranking`.
        service: Completion service (`ModelRouter` or a test double).
        prompts, routing: From config.
        depth: Profile name, "auto" (length/keyword heuristic) or a DepthConfig.
        ranking: Orders agents for depth filtering. Default keeps the given order.
        policy: Consensus threshold and round cap.
        trace: Receives stage start/finish events.
        token: Cancels in-flight model calls, tool calls and retry waits.
    """

    def __init__(
        self,
        user_input: str,
        agents: Sequence[AgentConfig],
        service: CompletionService,
        prompts: PromptsConfig,
        routing: RoutingConfig,
        depth: str | DepthConfig = "auto",
        tools: ToolRegistry | None = None,
        expertise: dict[str, dict[str, float]] | None = None,
        challengers: dict[str, list[str]] | None = None,
        retry: RetryOptions | None = None,
        ranking: AgentRanking | None = None,
        policy: ConsensusPolicy | None = None,
        trace: TraceSink | None = None,
        token: CancellationToken | None = None,
        stage_timeout_sec: float = DEFAULT_STAGE_TIMEOUT_SEC,
        chat_timeout_sec: float = DEFAULT_CHAT_TIMEOUT_SEC,
    ) -> None:
        cleaned = validate_prompt(user_input)
        enabled = validate_agents(agents)
        depth_config = _resolve_depth(depth, cleaned)
        panel = filter_agents_for_depth(enabled, depth_config, ranking or priority_ranking(()))

        self._ctx = StageContext(
            user_input=cleaned,
            agents=tuple(panel),
            depth=depth_config,
            service=service,
            tools=tools or ToolRegistry(),
            prompts=prompts,
            routing=routing,
            expertise=expertise or {},
            challengers=challengers or {},
            retry=retry or RetryOptions(),
            token=token,
        )
        self._policy = policy or ConsensusPolicy()
        self._trace = trace or NullTraceSink()
        self._stage_timeout_sec = stage_timeout_sec
        self._chat_timeout_sec = chat_timeout_sec
        self._rounds: list[Round] = []
        self._dialogue: list[DialogueEntry] = []
        self._paused = False

        logger.info(
            "Session: depth %s, %d/%d agents (%s)",
            depth_config.name,
            len(panel),
            len(enabled),
            ", ".join(a.id for a in panel),
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        user_input: str,
        agents: Sequence[AgentConfig],
        service: CompletionService,
        depth: str | None = None,
        **kwargs,
    ) -> "PipelineSession":
        """Build a session with every policy knob taken from the loaded settings."""
        return cls(
            user_input=user_input,
            agents=agents,
            service=service,
            depth=depth or config.defaults.depth,
            **session_options(config),
            **kwargs,
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: SessionSnapshot,
        agents: Sequence[AgentConfig],
        service: CompletionService,
        prompts: PromptsConfig,
        routing: RoutingConfig,
        **kwargs,
    ) -> "PipelineSession":
        """Restore a session. Agents and services are not part of the snapshot."""
        session = cls(
            user_input=snapshot.user_input,
            agents=agents,
            service=service,
            prompts=prompts,
            routing=routing,
            depth=snapshot.depth,
            **kwargs,
        )
        session._rounds = list(snapshot.rounds)
        session._dialogue = list(snapshot.dialogue)
        session._paused = snapshot.paused
        return session

    # -- read-only state --------------------------------------------------

    @property
    def context(self) -> StageContext:
        return self._ctx

    @property
    def depth(self) -> DepthConfig:
        return self._ctx.depth

    @property
    def panel(self) -> tuple[AgentConfig, ...]:
        return self._ctx.agents

    @property
    def policy(self) -> ConsensusPolicy:
        return self._policy

    @property
    def rounds(self) -> tuple[Round, ...]:
        return tuple(self._rounds)

    @property
    def current_round(self) -> Round | None:
        return self._rounds[-1] if self._rounds else None

    @property
    def current_stage(self) -> str:
        return self._rounds[-1].stage if self._rounds else "questions"

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def is_complete(self) -> bool:
        return self.current_stage == "complete"

    @property
    def dialogue(self) -> tuple[DialogueEntry, ...]:
        return tuple(self._dialogue)

    @property
    def document(self) -> str | None:
        return next((r.document for r in reversed(self._rounds) if r.document), None)

    @property
    def total_cost(self) -> float:
        return sum(m.cost for r in self._rounds for m in r.metadata.values())

    # -- controls -----------------------------------------------------------

    def start_round(self, comment: str | None = None) -> Round:
        """Open round 1. Later rounds are opened by the consensus gate."""
        if self._rounds:
            raise SessionStateError("Session already started; use reset() to start over")
        round_ = Round(number=1, user_comment=validate_comment(comment))
        self._rounds.append(round_)
        return round_

    def pause(self, comment: str | None = None) -> Round:
        """Stop before the next stage. A comment goes to the next stage handler."""
        round_ = self._require_open_round()
        comment = validate_comment(comment)
        self._paused = True
        updated = replace(round_, status="paused", user_comment=comment or round_.user_comment)
        self._rounds[-1] = updated
        if comment:
            self._dialogue.append(DialogueEntry("user", comment, now_iso(), "user"))
        logger.info("Round %d paused before %s", updated.number, updated.stage)
        return updated

    def resume(self, comment: str | None = None) -> Round:
        if not self._paused:
            raise SessionStateError("Session is not paused")
        round_ = self._require_open_round()
        comment = validate_comment(comment)
        self._paused = False
        status = "running" if round_.completed_stages else "pending"
        updated = replace(round_, status=status, user_comment=comment or round_.user_comment)
        self._rounds[-1] = updated
        if comment:
            self._dialogue.append(DialogueEntry("user", comment, now_iso(), "user"))
        logger.info("Round %d resumed at %s", updated.number, updated.stage)
        return updated

    def reset(self) -> None:
        """Drop all rounds and dialogue. Configuration is kept."""
        self._rounds.clear()
        self._dialogue.clear()
        self._paused = False
        logger.info("Session reset")

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            user_input=self._ctx.user_input,
            depth=self._ctx.depth.name,
            dialogue=tuple(self._dialogue),
            rounds=tuple(self._rounds),
            current_stage=self.current_stage,
            paused=self._paused,
        )

    def _require_open_round(self) -> Round:
        round_ = self.current_round
        if round_ is None:
            raise SessionStateError("No round started")
        if round_.stage == "complete":
            raise SessionStateError("Pipeline already complete")
        return round_

    # -- execution ------------------------------------------------------------

    async def run_next_stage(self) -> Round:
        """Run exactly one stage of the current round and return the updated round.

        Starts round 1 if needed. A failed handler marks the round failed and
        re-raises; calling again retries the same stage with earlier outputs kept.

        Raises:
            SessionStateError: While paused or once the pipeline is complete.
            StageFailedError: On zero successful agents, or when the stage times out.
        """
        if self._paused:
            raise SessionStateError("Session is paused; resume() first")
        if not self._rounds:
            self.start_round()
        round_ = self._require_open_round()
        stage = round_.stage
        handler = STAGE_HANDLERS[stage]

        round_ = replace(round_, status="running", error=None)
        self._rounds[-1] = round_
        self._trace.stage_started(round_.number, stage)

        try:
            output = await asyncio.wait_for(handler(self._ctx, round_), timeout=self._stage_timeout_sec)
        except TimeoutError as exc:
            error = StageFailedError(stage, round_.number, f"timed out after {self._stage_timeout_sec:.0f}s")
            self._fail(round_, stage, error)
            raise error from exc
        except Exception as exc:
            self._fail(round_, stage, exc)
            raise

        updated, opened = self._fold(round_, stage, output)
        self._rounds[-1] = updated
        self._dialogue.extend(output.dialogue)
        if opened is not None:
            self._rounds.append(opened)
            self._dialogue.append(
                DialogueEntry(
                    "system",
                    f"Consensus not reached in round {updated.number}; starting round {opened.number}.",
                    now_iso(),
                )
            )
        self._trace.stage_finished(round_.number, stage, "complete", output.model, output.metadata)
        return updated

    async def run_to_completion(self, on_stage: Callable[[Round], None] | None = None) -> Round | None:
        """Run stages until the pipeline completes or the session is paused."""
        while not self.is_complete and not self._paused:
            round_ = await self.run_next_stage()
            if on_stage is not None:
                on_stage(round_)
        return self.current_round

    async def chat(self, agent_id: str, message: str) -> str:
        """One follow-up answer from a panel agent, bounded by the chat timeout."""
        cleaned = validate_comment(message)
        if not cleaned:
            raise InputValidationError("prompt_too_short", "Chat message is empty")
        try:
            completion = await asyncio.wait_for(
                run_chat_turn(self._ctx, agent_id, cleaned, self._dialogue, self.document),
                timeout=self._chat_timeout_sec,
            )
        except TimeoutError as exc:
            raise TimeoutError(f"Chat with {agent_id} timed out after {self._chat_timeout_sec:.0f}s") from exc

        answer = completion.content.strip()
        self._dialogue.append(DialogueEntry("user", cleaned, now_iso(), "chat", target=agent_id))
        self._dialogue.append(DialogueEntry(agent_id, answer, now_iso(), "chat"))
        return answer

    def _fail(self, round_: Round, stage: str, exc: BaseException) -> None:
        if isinstance(exc, OperationCancelledError):
            logger.info("Round %d %s cancelled", round_.number, stage)
        else:
            logger.error("Round %d %s failed: %s", round_.number, stage, exc)
        self._rounds[-1] = replace(round_, status="failed", error=str(exc))
        self._trace.stage_finished(round_.number, stage, "failed", None, None)

    def _fold(self, round_: Round, stage: str, output: StageOutput) -> tuple[Round, Round | None]:
        """Fold a handler's output into the round. Returns (updated, newly opened round or None)."""
        metadata = output.metadata
        following = next_stage(stage)
        opened: Round | None = None

        if stage == "voting":
            rate = approval_rate(output.updates.get("votes", ()))
            advance = self._policy.should_advance(rate, round_.number)
            metadata = replace(metadata, counts={**metadata.counts, "advance": int(advance)})
            logger.info(
                "Round %d consensus %.0f%% -> %s",
                round_.number,
                rate * 100,
                "final document" if advance else "new round",
            )
            if not advance:
                following = "complete"
                opened = Round(number=round_.number + 1, user_comment=round_.user_comment)

        updated = replace(
            round_,
            **output.updates,
            metadata={**round_.metadata, stage: metadata},
            completed_stages=round_.completed_stages + (stage,),
            stage=following,
            status="complete" if following == "complete" else "running",
        )
        return updated, opened
