"""Mediaflow CLI.

Main entry point for the mediaflow command.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__

console = Console()

SECTIONS = ("agent", "recovery", "checkpoints", "ui", "store")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.pass_context
def main(ctx: click.Context, version: bool, debug: bool) -> None:
    """Mediaflow - tool-calling orchestration for media production.

    Inspect recovery policies and tool groups, classify errors, and replay
    scripted productions through the orchestration loop.

    Use --debug for verbose error output with stack traces.
    """
    if debug:
        from .utils.errors import set_debug_mode

        set_debug_mode(True)
        _setup_logging("debug")

    if version:
        console.print(f"mediaflow version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# =============================================================================
# Inspection Commands
# =============================================================================


@main.command()
@click.option("--tool", "-t", "tool_name", type=str, help="Show the policy applied to one tool")
def policies(tool_name: str | None) -> None:
    """Show recovery policies.

    Lists the built-in policy table merged with config overrides. Tools
    without a policy use the default shown on the last row.

    \b
    Examples:
        mediaflow policies                        # All policies
        mediaflow policies --tool generate_music  # One tool
    """
    from .config import get_config

    table_data = get_config().recovery.policy_table()
    rows = [table_data.get_recovery_strategy(tool_name)] if tool_name else [*table_data, table_data.default]

    table = Table(title="Recovery Policies")
    table.add_column("Tool", style="cyan")
    table.add_column("Retries", justify="right")
    table.add_column("Delay", justify="right")
    table.add_column("Backoff", justify="right")
    table.add_column("Max Delay", justify="right")
    table.add_column("Fallback")
    table.add_column("Continue")

    for policy in rows:
        table.add_row(
            policy.tool,
            str(policy.max_retries),
            f"{policy.initial_delay:g}s",
            f"x{policy.backoff_factor:g}",
            f"{policy.max_delay:g}s",
            policy.fallback_action or "[dim]-[/dim]",
            "[green]yes[/green]" if policy.continue_on_failure else "[red]no[/red]",
        )

    console.print(table)


@main.command()
def groups() -> None:
    """Show the tool catalog by group."""
    from .tools.catalog import TOOL_CATALOG
    from .tools.registry import TOOL_GROUP_ORDER, get_group_dependency_description

    table = Table(title="Tool Groups")
    table.add_column("Group", style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Depends On")
    table.add_column("Description", style="dim")

    for group in TOOL_GROUP_ORDER:
        for name, entry in TOOL_CATALOG.items():
            if entry.group != group:
                continue
            table.add_row(group.value, name, ", ".join(entry.dependencies) or "-", entry.description)

    console.print(table)
    console.print()
    console.print(get_group_dependency_description(), highlight=False)


@main.command("validate-order")
@click.argument("tools", nargs=-1, required=True)
def validate_order(tools: tuple[str, ...]) -> None:
    """Check a sequence of tool calls for backward group transitions.

    \b
    Examples:
        mediaflow validate-order plan_video generate_visuals export_final_video
    """
    from .tools.catalog import build_catalog_registry

    validation = build_catalog_registry().validate_execution_order(tools)

    if validation.is_valid:
        console.print(f"[green]✓[/green] Order is valid ({len(tools)} tools)")
        return

    console.print(f"[red]✗[/red] {len(validation.violations)} order violation(s):")
    for violation in validation.violations:
        expected = ", ".join(g.value for g in violation.expected_after) or "-"
        console.print(
            f"  [cyan]{violation.tool}[/cyan] at position {violation.actual_position} "
            f"[dim](expected after: {expected})[/dim]"
        )
    raise SystemExit(1)


@main.command()
@click.argument("message")
@click.option("--tool", "-t", "tool_name", type=str, help="Tool that raised the error")
def classify(message: str, tool_name: str | None) -> None:
    """Classify an error message as transient, recoverable or fatal.

    \b
    Examples:
        mediaflow classify "503 Service Unavailable"
        mediaflow classify "Invalid API key" --tool generate_music
    """
    from .recovery import ErrorCategory, explain_error

    category, reason, status = explain_error(Exception(message), tool_name)
    color = {
        ErrorCategory.TRANSIENT: "yellow",
        ErrorCategory.RECOVERABLE: "cyan",
        ErrorCategory.FATAL: "red",
    }[category]

    console.print(f"[bold {color}]{category.value}[/bold {color}]  {reason}")
    if status is not None:
        console.print(f"[dim]Status code: {status}[/dim]")


# =============================================================================
# Config Commands
# =============================================================================


@main.group()
def config() -> None:
    """View mediaflow configuration.

    Mediaflow reads ~/.mediaflow/config.toml (or $MEDIAFLOW_CONFIG).

    Configuration priority:
    1. Environment variables (highest)
    2. Config file
    3. Defaults (lowest)
    """
    pass


@config.command("show")
@click.option("--json", "-j", "as_json", is_flag=True, help="Output as JSON")
@click.option("--section", type=str, help="Show only a specific section")
def config_show(as_json: bool, section: str | None) -> None:
    """Show current configuration.

    \b
    Examples:
        mediaflow config show                  # Show all config
        mediaflow config show --json           # JSON output
        mediaflow config show --section agent  # Show only [agent]
    """
    from .config import get_config

    cfg = get_config()
    data = cfg.to_dict()

    if section:
        if section not in data:
            console.print(f"[red]Unknown section: {section}[/red]")
            console.print(f"[dim]Available: {', '.join(SECTIONS)}[/dim]")
            return
        data = {section: data[section]}

    if as_json:
        click.echo(json.dumps(data, indent=2, default=str))
        return

    console.print(f"[dim]# {cfg.config_path}[/dim]")
    for name, values in data.items():
        console.print(f"[bold]\\[{name}][/bold]")
        for key, value in values.items():
            console.print(f"  {key} = {value!r}", highlight=False)
        console.print()


@config.command("path")
def config_path_cmd() -> None:
    """Show the configuration file path."""
    from .config import get_config_path

    path = get_config_path()
    console.print(str(path))
    if not path.exists():
        console.print("[dim](file does not exist, defaults are used)[/dim]")


# =============================================================================
# Replay
# =============================================================================


@main.command()
@click.argument("script", type=click.Path(path_type=Path))
@click.option("--max-iterations", "-n", type=int, help="Override agent.max_iterations")
@click.option("--no-order", is_flag=True, help="Do not enforce tool group order")
@click.option("--json", "-j", "as_json", is_flag=True, help="Print the run result as JSON")
def replay(script: Path, max_iterations: int | None, no_order: bool, as_json: bool) -> None:
    """Replay a scripted production through the orchestration loop.

    The script supplies the user request, the model's turns and each
    tool's responses. Retry backoff is skipped so replays finish quickly.

    \b
    Examples:
        mediaflow replay visuals_outage.json
        mediaflow replay run.json --max-iterations 5 --json
    """
    from .agent import AgentExecutor, ProgressEvent, ProgressStage
    from .config import get_config
    from .recovery import RetryExecutor, format_errors_for_response
    from .test_utils import load_script
    from .tools.catalog import TOOL_CATALOG, build_registry
    from .utils.errors import handle_exception

    cfg = get_config()
    if not logging.getLogger().handlers:
        _setup_logging(cfg.ui.log_level)

    try:
        loaded = load_script(script)
    except (OSError, ValueError) as e:
        handle_exception(console, e, "loading replay script")
        return

    if max_iterations is not None:
        cfg.agent.max_iterations = max_iterations
    if no_order:
        cfg.agent.enforce_group_order = False

    async def no_sleep(_: float) -> None:
        return None

    registry = build_registry(loaded.tools)
    executor = AgentExecutor.from_config(
        cfg,
        loaded.model,
        registry,
        utility_tools=[t for t in loaded.tools if t.name not in TOOL_CATALOG],
        retry_executor=RetryExecutor(sleep=no_sleep),
    )

    styles = {
        ProgressStage.RETRY: "yellow",
        ProgressStage.FALLBACK: "yellow",
        ProgressStage.WARNING: "yellow",
        ProgressStage.LIMIT_REACHED: "red",
        ProgressStage.ERROR: "red",
        ProgressStage.COMPLETE: "green",
        ProgressStage.SESSION_CREATED: "cyan",
    }

    def show(event: ProgressEvent) -> None:
        if as_json:
            return
        style = styles.get(event.stage, "dim")
        if event.stage == ProgressStage.TOOL_RESULT and event.success is False:
            style = "red"
        console.print(
            f"[{style}]{event.stage.value:>15}[/{style}]  {event.message}",
            highlight=False,
            soft_wrap=True,
        )

    try:
        result = asyncio.run(executor.run(loaded.request, on_progress=show))
    except Exception as e:
        handle_exception(console, e, "running production")
        return

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json", exclude={"messages"}), indent=2))
        return

    report = result.report
    console.print()
    console.print(f"[bold]Stage:[/bold] {result.stage.value}  [dim]({result.iterations} iterations)[/dim]")
    if result.session_id:
        console.print(f"[bold]Session:[/bold] {result.session_id}")
    console.print(f"[bold]Tools run:[/bold] {', '.join(result.tool_history) or '-'}")
    console.print(
        f"[bold]Report:[/bold] {report['succeeded']} succeeded, "
        f"{report['fallback_applied']} fallback, {report['failed']} failed"
    )
    console.print(report["summary"], highlight=False, soft_wrap=True)

    errors_text = format_errors_for_response(_report_errors(report))
    if errors_text:
        console.print()
        console.print(errors_text, highlight=False, markup=False, soft_wrap=True)

    if result.final_response:
        console.print()
        console.print(result.final_response, highlight=False, soft_wrap=True)

    if not result.is_usable:
        raise SystemExit(1)


def _report_errors(report: dict) -> list:
    from .recovery import ToolError

    return [ToolError.from_dict(e) for e in report.get("errors", [])]


if __name__ == "__main__":
    main()
