"""Load settings.yaml and agent persona files into typed dataclasses. Checks API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import frontmatter
import yaml

from spec_council.models import AgentConfig

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None
    input_cost_per_mtok: float = 0.0
    output_cost_per_mtok: float = 0.0


@dataclass
class PromptsConfig:
    questions: str
    research: str
    sub_agent: str
    sub_agent_detect: str
    challenge_generate: str
    challenge_respond: str
    resolution: str
    synthesis: str
    review: str
    voting: str
    spec_section: str
    chat: str


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_delay_sec: float = 1.0
    max_delay_sec: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True


@dataclass
class RoutingConfig:
    stages: dict[str, str]                                  # stage role -> model key
    agent_models: dict[str, str] = field(default_factory=dict)
    fallback: str | None = None

    def for_stage(self, role: str) -> str:
        return self.stages.get(role) or self.fallback or ""

    def for_agent(self, agent_id: str) -> str:
        return self.agent_models.get(agent_id) or self.for_stage("research")


@dataclass
class DefaultsConfig:
    depth: str
    output_dir: Path
    max_rounds: int = 3
    approval_threshold: float = 0.6
    stage_timeout_sec: float = 1800.0
    chat_timeout_sec: float = 120.0
    agents_dir: Path | None = None
    agent_priority: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    routing: RoutingConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    expertise: dict[str, dict[str, float]] = field(default_factory=dict)
    challengers: dict[str, list[str]] = field(default_factory=dict)
    available_providers: set[str] = field(default_factory=set)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    agents_dir = defaults_raw.get("agents_dir")
    defaults = DefaultsConfig(
        depth=str(defaults_raw.get("depth", "auto")),
        output_dir=Path(defaults_raw["output_dir"]),
        max_rounds=int(defaults_raw.get("max_rounds", 3)),
        approval_threshold=float(defaults_raw.get("approval_threshold", 0.6)),
        stage_timeout_sec=float(defaults_raw.get("stage_timeout_sec", 1800)),
        chat_timeout_sec=float(defaults_raw.get("chat_timeout_sec", 120)),
        agents_dir=(settings_path.parent / agents_dir) if agents_dir else None,
        agent_priority=list(defaults_raw.get("agent_priority", [])),
    )

    retry_raw = raw.get("retry", {})
    retry = RetryConfig(
        max_retries=int(retry_raw.get("max_retries", 3)),
        initial_delay_sec=float(retry_raw.get("initial_delay_sec", 1.0)),
        max_delay_sec=float(retry_raw.get("max_delay_sec", 30.0)),
        multiplier=float(retry_raw.get("multiplier", 2.0)),
        jitter=bool(retry_raw.get("jitter", True)),
    )

    prompts = PromptsConfig(**{k: str(v) for k, v in raw["prompts"].items()})

    routing_raw = raw["routing"]
    routing = RoutingConfig(
        stages={k: str(v) for k, v in routing_raw["stages"].items()},
        agent_models={k: str(v) for k, v in routing_raw.get("agent_models", {}).items()},
        fallback=routing_raw.get("fallback"),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            input_cost_per_mtok=float(model_raw.get("input_cost_per_mtok", 0.0)),
            output_cost_per_mtok=float(model_raw.get("output_cost_per_mtok", 0.0)),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s (set %s in .env)",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        routing=routing,
        retry=retry,
        expertise={
            domain: {agent: float(score) for agent, score in scores.items()}
            for domain, scores in raw.get("expertise", {}).items()
        },
        challengers={k: list(v) for k, v in raw.get("challengers", {}).items()},
        available_providers=available_providers,
    )


def load_agent_configs(agents_dir: Path) -> list[AgentConfig]:
    """Load agent personas from Markdown files with YAML front matter.

    Front matter keys: id, name, temperature, enabled. The body is the persona text.
    Files are read in name order so the roster is stable.
    """
    if not agents_dir.is_dir():
        raise FileNotFoundError(f"Agents directory not found: {agents_dir}")

    agents: list[AgentConfig] = []
    for path in sorted(agents_dir.glob("*.md")):
        post = frontmatter.load(str(path))
        meta = post.metadata
        agents.append(
            AgentConfig(
                id=str(meta.get("id", path.stem)),
                name=str(meta.get("name", path.stem.title())),
                instructions=post.content.strip(),
                temperature=float(meta.get("temperature", 0.7)),
                enabled=bool(meta.get("enabled", True)),
            )
        )
    logger.debug("Loaded %d agent personas from %s", len(agents), agents_dir)
    return agents
