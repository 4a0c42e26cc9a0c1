"""Click CLI: config loading, provider selection, stage-by-stage session run, and output."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_agent_configs, load_config
from spec_council.depth import DEPTH_CONFIGS
from spec_council.errors import SpecCouncilError, describe_error
from spec_council.healthcheck import run_health_checks
from spec_council.models import AgentConfig
from spec_council.output import print_document, print_stage_summary, save_to_file
from spec_council.providers.base import CompletionProvider
from spec_council.providers.router import ModelRouter, build_providers
from spec_council.sequencer import PipelineSession, session_options
from spec_council.snapshot import read_snapshot, save_snapshot
from spec_council.trace import LoggingTraceSink

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

DEPTH_CHOICES = ["auto", *DEPTH_CONFIGS]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _check_and_filter_providers(
    all_providers: dict[str, CompletionProvider],
) -> dict[str, CompletionProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(all_providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(
        f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}"
    )
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _build_session(
    config: AppConfig,
    prompt_text: str | None,
    agents: list[AgentConfig],
    router: ModelRouter,
    depth: str | None,
    snapshot_path: Path | None,
) -> PipelineSession:
    """Restore from the snapshot file when one is usable, else start a new session."""
    trace = LoggingTraceSink()
    if snapshot_path is not None:
        snapshot = read_snapshot(snapshot_path)
        if snapshot is not None:
            console.print(
                f"Resuming session from [bold]{snapshot_path}[/bold] "
                f"(round {len(snapshot.rounds)}, next stage: {snapshot.current_stage})"
            )
            return PipelineSession.from_snapshot(
                snapshot, agents, router, **session_options(config), trace=trace
            )
    if not prompt_text:
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument, --file, or a valid --snapshot.")
        sys.exit(1)
    return PipelineSession.from_config(config, prompt_text, agents, router, depth=depth, trace=trace)


def _ask_for_guidance(session: PipelineSession) -> None:
    """Pause before a new round and let the user steer it."""
    round_ = session.current_round
    console.print(f"\n[yellow]Consensus not reached. Round {round_.number} starts next.[/yellow]")
    comment = click.prompt("Guidance for the experts (enter to skip)", default="", show_default=False)
    session.pause(comment or None)
    session.resume()


async def _run_session(session: PipelineSession, interactive: bool, snapshot_path: Path | None) -> None:
    """Run stages one at a time, printing a summary after each."""
    console.print(
        f"\n[bold cyan]Spec Council[/bold cyan] - depth {session.depth.name}, "
        f"{len(session.panel)} experts"
    )
    console.print(f"Panel: {', '.join(a.name for a in session.panel)}")
    prompt_text = session.context.user_input
    console.print(f"Idea: [italic]{prompt_text[:80]}{'...' if len(prompt_text) > 80 else ''}[/italic]\n")

    if session.paused:
        session.resume()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=None)
        while not session.is_complete:
            round_number = len(session.rounds) or 1
            stage = session.current_stage
            progress.update(task, description=f"Round {round_number}: {stage}...")
            try:
                updated = await session.run_next_stage()
            finally:
                if snapshot_path is not None:
                    save_snapshot(session.snapshot(), snapshot_path)
            progress.stop()
            print_stage_summary(updated, stage)
            if interactive and len(session.rounds) > round_number:
                _ask_for_guidance(session)
            progress.start()


async def _chat_loop(session: PipelineSession) -> None:
    """Follow-up questions to individual experts until an empty line."""
    ids = [a.id for a in session.panel]
    console.print(f"\n[bold]Ask an expert[/bold] ({', '.join(ids)}). Format: id: question. Empty line quits.")
    while True:
        line = click.prompt(">", default="", show_default=False).strip()
        if not line:
            return
        agent_id, _, message = line.partition(":")
        try:
            answer = await session.chat(agent_id.strip(), message.strip())
        except (SpecCouncilError, TimeoutError) as exc:
            user_msg = describe_error(exc)
            console.print(f"[red]{user_msg.title}:[/red] {escape(user_msg.message)}")
            continue
        console.print(f"[bold]{agent_id.strip()}[/bold]: {escape(answer)}")


@click.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read the product idea from a file")
@click.option("--depth", type=click.Choice(DEPTH_CHOICES), default=None,
              help="Research depth (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--snapshot", "snapshot_file", default=None,
              help="Session snapshot file: resumed from if valid, saved after every stage")
@click.option("--interactive", is_flag=True, default=False,
              help="Ask for guidance between rounds and chat with experts at the end")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    prompt: str | None,
    prompt_file: str | None,
    depth: str | None,
    output_path: str | None,
    snapshot_file: str | None,
    interactive: bool,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Spec Council -- a panel of AI experts turns a product idea into a technical spec.

    \b
    Examples:
      spec-council "A habit tracker for remote teams with Slack reminders"
      spec-council --file idea.md --depth deep
      spec-council "Marketplace for used lab equipment" --snapshot session.json --interactive
      spec-council --snapshot session.json
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
        agents_dir = config.defaults.agents_dir or Path(__file__).parent.parent / "config" / "agents"
        agents = load_agent_configs(agents_dir)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    snapshot_path = Path(snapshot_file) if snapshot_file else None

    all_providers = build_providers(config)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        all_providers = _check_and_filter_providers(all_providers)

    router = ModelRouter(all_providers, config.routing.fallback)

    prompt_text = Path(prompt_file).read_text(encoding="utf-8").strip() if prompt_file else prompt

    try:
        session = _build_session(config, prompt_text, agents, router, depth, snapshot_path)
    except SpecCouncilError as exc:
        user_msg = describe_error(exc)
        console.print(f"[bold red]{user_msg.title}:[/bold red] {escape(user_msg.message)}")
        sys.exit(1)

    try:
        asyncio.run(_run_session(session, interactive, snapshot_path))
    except SpecCouncilError as exc:
        logger.debug("Session stopped", exc_info=True)
        user_msg = describe_error(exc)
        console.print(f"\n[bold red]{user_msg.title}:[/bold red] {escape(user_msg.message)}")
        if snapshot_path is not None and user_msg.retryable:
            console.print(f"[dim]Run again with --snapshot {snapshot_path} to retry from this stage.[/dim]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)

    if session.document:
        print_document(session.document)

    saved_path = save_to_file(
        session.context.user_input, session.rounds, output_dir, depth=session.depth.name
    )
    console.print(f"\n[dim]Saved to: {saved_path} | Total cost: ${session.total_cost:.4f}[/dim]")

    if interactive:
        asyncio.run(_chat_loop(session))


if __name__ == "__main__":
    main()
