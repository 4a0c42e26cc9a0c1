"""Pure dataclasses for the spec council pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from typing import Literal

Stage = Literal["questions", "research", "challenge", "synthesis", "review", "voting", "spec", "complete"]
RoundStatus = Literal["pending", "running", "paused", "complete", "failed"]
Domain = Literal["technical", "design", "market", "legal", "growth", "security"]
ChallengeType = Literal["feasibility", "risk", "alternative", "assumption", "vision", "cost"]
Severity = Literal["critical", "major", "minor"]
IssueCategory = Literal["accuracy", "completeness", "citation", "feasibility", "consistency"]

STAGE_ORDER: tuple[str, ...] = (
    "questions",
    "research",
    "challenge",
    "synthesis",
    "review",
    "voting",
    "spec",
    "complete",
)


@dataclass(frozen=True)
class AgentConfig:
    id: str
    name: str
    instructions: str        # persona / system prompt
    temperature: float
    enabled: bool = True


@dataclass(frozen=True)
class Completion:
    content: str
    model: str               # actual model string used
    cost: float
    prompt_tokens: int
    completion_tokens: int
    latency_sec: float

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ResearchQuestion:
    id: str
    question: str
    domain: Domain
    priority: int            # 1-10
    required_expertise: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExpertAssignment:
    agent_id: str
    agent_name: str
    model: str               # model key from routing
    questions: tuple[ResearchQuestion, ...] = ()


@dataclass(frozen=True)
class ToolUse:
    tool: str
    success: bool
    duration_sec: float


@dataclass(frozen=True)
class SubAgentRequest:
    parent_agent_id: str
    specialization: str
    research_goal: str
    max_iterations: int = 5
    tools_needed: tuple[str, ...] | None = None
    context: str = ""


@dataclass(frozen=True)
class SubAgentResult:
    sub_agent_id: str
    specialization: str
    findings: str
    confidence: int          # 0-100
    tools_used: tuple[ToolUse, ...]
    duration_sec: float
    cost: float
    tokens: int
    iterations: int


@dataclass(frozen=True)
class AgentResearchResult:
    agent_id: str
    agent_name: str
    questions: tuple[ResearchQuestion, ...]
    findings: str
    tools_used: tuple[ToolUse, ...]
    duration_sec: float
    model: str
    cost: float
    tokens: int
    sub_agents: tuple[SubAgentResult, ...] = ()


@dataclass(frozen=True)
class ChallengeQuestion:
    id: str
    type: ChallengeType
    question: str
    target_agent_id: str     # whose findings are challenged ("general" when none)
    challenger: str          # agent id
    priority: int            # 1-10


@dataclass(frozen=True)
class ChallengeResponse:
    challenge_id: str
    challenger: str
    challenge: str           # the counter-argument
    evidence_against: tuple[str, ...]
    risk_score: int          # 0-10
    model: str
    cost: float
    alternative_approach: str | None = None


@dataclass(frozen=True)
class DebateResolution:
    agent_id: str            # owner of the original position
    original_position: str
    challenges: tuple[str, ...]
    resolution: str
    confidence_change: int   # -100..100
    adopted_alternatives: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResearchQuality:
    tools_used: int
    cost: float
    duration_sec: float
    battle_tested: bool
    confidence_boost: int


@dataclass(frozen=True)
class ExpertSynthesis:
    agent_id: str
    agent_name: str
    synthesis: str
    timestamp: str           # ISO 8601
    research_quality: ResearchQuality


@dataclass(frozen=True)
class ReviewIssue:
    severity: Severity
    category: IssueCategory
    description: str
    remediation: str
    affected_agent: str | None = None


@dataclass(frozen=True)
class ExpertCoverage:
    citations: int
    verified: bool


@dataclass(frozen=True)
class CitationAnalysis:
    total_citations: int = 0
    verified_citations: int = 0
    missing_citations: int = 0
    expert_coverage: dict[str, ExpertCoverage] = field(default_factory=dict)


@dataclass(frozen=True)
class ReviewResult:
    overall_score: int       # 0-100
    passed: bool
    issues: tuple[ReviewIssue, ...]
    recommendations: tuple[str, ...]
    citation_analysis: CitationAnalysis
    model: str
    timestamp: str


@dataclass(frozen=True)
class ExpertVote:
    agent_id: str
    approved: bool
    confidence: int          # 0-100
    reasoning: str
    key_requirements: tuple[str, ...]
    timestamp: str


@dataclass(frozen=True)
class StageMetadata:
    cost: float = 0.0
    duration_sec: float = 0.0
    counts: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Round:
    number: int
    stage: Stage = "questions"                   # next stage to run
    status: RoundStatus = "pending"
    user_comment: str | None = None
    completed_stages: tuple[str, ...] = ()
    questions: tuple[ResearchQuestion, ...] = ()
    assignments: tuple[ExpertAssignment, ...] = ()
    research: tuple[AgentResearchResult, ...] = ()
    failures: dict[str, str] = field(default_factory=dict)   # "stage:agent_id" -> error
    challenges: tuple[ChallengeQuestion, ...] = ()
    challenge_responses: tuple[ChallengeResponse, ...] = ()
    resolutions: tuple[DebateResolution, ...] = ()
    syntheses: tuple[ExpertSynthesis, ...] = ()
    review: ReviewResult | None = None
    votes: tuple[ExpertVote, ...] = ()
    document: str | None = None
    metadata: dict[str, StageMetadata] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class DialogueEntry:
    speaker: str             # agent id, "user" or "system"
    message: str
    timestamp: str
    kind: Literal["discussion", "answer", "user", "chat"] = "discussion"
    target: str | None = None   # agent addressed by a user chat message


@dataclass(frozen=True)
class StageTrace:
    round_number: int
    stage: str
    started_at: float
    ended_at: float | None = None
    status: str = "running"
    model: str | None = None
