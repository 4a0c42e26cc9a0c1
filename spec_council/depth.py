"""Research depth profiles: map an intensity level to concrete resource limits.

Everything here is pure and deterministic. It runs once when a session is
configured, never per call.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Literal

from spec_council.models import AgentConfig

Depth = Literal["quick", "standard", "deep", "exhaustive"]
ToolTier = Literal["essential", "standard", "all"]


@dataclass(frozen=True)
class DepthConfig:
    name: Depth
    max_iterations: int          # tool-loop iterations per agent
    max_agents: int              # fan-out width
    enable_sub_agents: bool
    enable_fact_checking: bool
    tool_tier: ToolTier
    question_count: int
    estimated_cost: str
    estimated_duration: str
    description: str


DEPTH_CONFIGS: dict[str, DepthConfig] = {
    "quick": DepthConfig(
        name="quick",
        max_iterations=3,
        max_agents=3,
        enable_sub_agents=False,
        enable_fact_checking=False,
        tool_tier="essential",
        question_count=4,
        estimated_cost="$0.05",
        estimated_duration="2-3 min",
        description="Fast overview with essential research.",
    ),
    "standard": DepthConfig(
        name="standard",
        max_iterations=6,
        max_agents=5,
        enable_sub_agents=False,
        enable_fact_checking=True,
        tool_tier="standard",
        question_count=7,
        estimated_cost="$0.15",
        estimated_duration="5-7 min",
        description="Balanced depth and cost, with fact-checking.",
    ),
    "deep": DepthConfig(
        name="deep",
        max_iterations=10,
        max_agents=7,
        enable_sub_agents=True,
        enable_fact_checking=True,
        tool_tier="all",
        question_count=10,
        estimated_cost="$0.40",
        estimated_duration="10-15 min",
        description="Thorough research with sub-agents.",
    ),
    "exhaustive": DepthConfig(
        name="exhaustive",
        max_iterations=15,
        max_agents=7,
        enable_sub_agents=True,
        enable_fact_checking=True,
        tool_tier="all",
        question_count=12,
        estimated_cost="$1.00",
        estimated_duration="20-30 min",
        description="Maximum depth with sub-agents and long tool loops.",
    ),
}

COMPLEXITY_KEYWORDS = (
    "architecture", "scalable", "production", "security",
    "enterprise", "complex", "multiple", "integrate",
    "migration", "refactor", "large-scale", "critical",
)

ESSENTIAL_TOOLS = ("web_search", "exa_search")
STANDARD_TOOLS = ESSENTIAL_TOOLS + ("competitor_analysis", "github_search", "stackoverflow_search")
ALL_TOOLS = STANDARD_TOOLS + (
    "pricing_intelligence",
    "seo_keyword",
    "stripe_pricing",
    "aws_cost_estimator",
    "appstore_analytics",
    "market_data",
    "npm_search",
)

_TOOLS_BY_TIER: dict[str, tuple[str, ...]] = {
    "essential": ESSENTIAL_TOOLS,
    "standard": STANDARD_TOOLS,
    "all": ALL_TOOLS,
}

# Ranks an agent list; must be stable and deterministic.
AgentRanking = Callable[[Sequence[AgentConfig]], list[AgentConfig]]


def get_depth_config(depth: str) -> DepthConfig:
    """Look up a profile by name. Raises KeyError for unknown names."""
    return DEPTH_CONFIGS[depth]


def recommend_depth(prompt_text: str) -> Depth:
    """Pick a profile from prompt length, promoting mid-length prompts with complexity keywords.

    Length alone is monotonic: <100 quick, <250 standard, <500 deep, else exhaustive.
    A 100-249 character prompt that mentions a complexity keyword is promoted to deep.
    """
    length = len(prompt_text)
    lowered = prompt_text.lower()
    has_keywords = any(keyword in lowered for keyword in COMPLEXITY_KEYWORDS)

    if length < 100:
        return "quick"
    if length < 250:
        return "deep" if has_keywords else "standard"
    if length < 500:
        return "deep"
    return "exhaustive"


def priority_ranking(order: Sequence[str]) -> AgentRanking:
    """Build a ranking that sorts agents by position in `order`.

    Agents not named in `order` rank last, keeping their original relative order.
    """
    index = {agent_id: i for i, agent_id in enumerate(order)}

    def rank(agents: Sequence[AgentConfig]) -> list[AgentConfig]:
        return sorted(agents, key=lambda a: index.get(a.id, len(index)))

    return rank


def filter_agents_for_depth(
    agents: Sequence[AgentConfig],
    depth: DepthConfig,
    ranking: AgentRanking,
) -> list[AgentConfig]:
    """Keep at most `depth.max_agents` agents, choosing the top-ranked ones."""
    if len(agents) <= depth.max_agents:
        return list(agents)
    return ranking(agents)[: depth.max_agents]


def get_tools_for_depth(depth: DepthConfig) -> tuple[str, ...]:
    """Return the tool whitelist for the profile's tier (essential ⊂ standard ⊂ all)."""
    return _TOOLS_BY_TIER.get(depth.tool_tier, STANDARD_TOOLS)
