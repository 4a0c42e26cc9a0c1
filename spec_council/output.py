"""Rich console output and markdown file save for pipeline sessions."""

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from spec_council.consensus import approval_rate
from spec_council.models import AgentResearchResult, ExpertVote, ReviewResult, Round

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _print_research(research: Sequence[AgentResearchResult]) -> None:
    for result in research:
        subtitle = f"{result.duration_sec:.1f}s | {len(result.tools_used)} tools"
        if result.sub_agents:
            subtitle += f" | {len(result.sub_agents)} sub-agents"
        console.print(
            Panel(
                _preview(result.findings),
                title=f"[bold]{result.agent_name}[/bold] ({result.model})",
                subtitle=subtitle,
                border_style="dim",
            )
        )


def _print_review(review: ReviewResult) -> None:
    style = "green" if review.passed else "yellow"
    lines = [f"Score: {review.overall_score}/100 ({'passed' if review.passed else 'needs work'})"]
    for issue in review.issues:
        lines.append(f"- [{issue.severity}] {issue.category}: {issue.description}")
    console.print(Panel("\n".join(lines), title="[bold]Review[/bold]", border_style=style))


def print_vote_tally(votes: Sequence[ExpertVote]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Expert")
    table.add_column("Vote")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasoning")
    for vote in votes:
        mark = "[green]approve[/green]" if vote.approved else "[red]reject[/red]"
        table.add_row(vote.agent_id, mark, str(vote.confidence), _preview(vote.reasoning, 20))
    console.print(table)
    console.print(Text(f"Approval: {approval_rate(votes):.0%}", style="dim"))


def print_stage_summary(round_: Round, stage: str) -> None:
    """Print a brief summary of the stage that just ran."""
    console.print(Rule(f"[bold cyan]Round {round_.number}: {stage}[/bold cyan]"))
    meta = round_.metadata.get(stage)
    if meta is not None:
        console.print(Text(f"Duration: {meta.duration_sec:.1f}s | Cost: ${meta.cost:.4f}", style="dim"))

    if stage == "questions":
        for question in round_.questions:
            console.print(f"  [bold]{question.id}[/bold] ({question.domain}, p{question.priority}) {question.question}")
    elif stage == "research":
        _print_research(round_.research)
    elif stage == "challenge":
        console.print(
            f"  {len(round_.challenges)} challenges, {len(round_.challenge_responses)} responses, "
            f"{len(round_.resolutions)} resolutions"
        )
    elif stage == "synthesis":
        for synthesis in round_.syntheses:
            console.print(f"  [bold]{synthesis.agent_name}[/bold]: {_preview(synthesis.synthesis, 25)}")
    elif stage == "review" and round_.review is not None:
        _print_review(round_.review)
    elif stage == "voting":
        print_vote_tally(round_.votes)

    for key, error in round_.failures.items():
        if key.startswith(f"{stage}:") or (stage == "challenge" and key.startswith("resolution:")):
            short_err = error.splitlines()[0][:120] if error else ""
            console.print(f"  [red]FAIL[/red] {key}: {escape(short_err)}")


def print_document(document: str) -> None:
    """Print the final specification using Rich markdown."""
    console.print(Rule("[bold green]Technical Specification[/bold green]"))
    console.print(Markdown(document))


def save_to_file(
    user_input: str,
    rounds: Sequence[Round],
    output_dir: Path,
    slug_override: str | None = None,
    depth: str | None = None,
) -> Path:
    """Save the final document and a per-round summary as a markdown file.

    Args:
        user_input: The product idea the session was run for.
        rounds: All rounds of the session, in order.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the product idea.
        depth: Depth profile name, shown in the header.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(user_input)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    total_cost = sum(m.cost for r in rounds for m in r.metadata.values())
    total_duration = sum(m.duration_sec for r in rounds for m in r.metadata.values())
    document = next((r.document for r in reversed(rounds) if r.document), None)

    lines: list[str] = [
        f"# Spec Council: {user_input[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Depth:** {depth or 'unknown'}",
        f"**Rounds:** {len(rounds)}",
        f"**Duration:** {total_duration:.1f}s",
        f"**Cost:** ${total_cost:.4f}",
        "",
        "---",
        "",
    ]

    if document:
        lines += [document, "", "---", ""]
    else:
        lines += ["*No final document was produced.*", "", "---", ""]

    for rnd in rounds:
        lines.append(f"## Round {rnd.number}")
        lines.append("")
        if rnd.user_comment:
            lines += [f"*User guidance:* {rnd.user_comment}", ""]
        for synthesis in rnd.syntheses:
            lines.append(f"### {synthesis.agent_name}")
            lines.append("")
            lines.append(synthesis.synthesis)
            lines.append("")
        if rnd.review is not None:
            lines.append(f"**Review score:** {rnd.review.overall_score}/100")
            lines.append("")
        if rnd.votes:
            lines.append(f"**Approval:** {approval_rate(rnd.votes):.0%}")
            lines.append("")
            for vote in rnd.votes:
                verdict = "approve" if vote.approved else "reject"
                lines.append(f"- {vote.agent_id}: {verdict} ({vote.confidence}) {vote.reasoning}")
            lines.append("")
        if rnd.error:
            lines += [f"*Round failed:* {rnd.error}", ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Session saved to: %s", filepath)
    return filepath
