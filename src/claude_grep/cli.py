"""CLI for claude-grep."""

import logging
import re
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from claude_grep import __version__
from claude_grep.config import PreferenceCategory, Preferences, PreferencesStore, Settings
from claude_grep.models import OutputFormat, SearchOptions, TimeRange

app = typer.Typer(
    name="claude-grep",
    help="Search Claude conversation history.",
    no_args_is_help=True,
)
project_app = typer.Typer(help="Manage projects.", no_args_is_help=True)
config_app = typer.Typer(help="Manage preferences.", no_args_is_help=True)
app.add_typer(project_app, name="project")
app.add_typer(config_app, name="config")

console = Console()
err_console = Console(stderr=True)


@dataclass
class AppContext:
    """Long-lived collaborators built once per process."""

    settings: Settings
    store: PreferencesStore
    preferences: Preferences


def build_context() -> AppContext:
    settings = Settings()
    store = PreferencesStore(settings.preferences_path)
    return AppContext(settings=settings, store=store, preferences=store.load())


def parse_time_range(value: str | None) -> TimeRange | None:
    """Parse a since string into a TimeRange starting at that instant.

    Supports:
    - Relative: "24h", "7d", "2w", "1m", "1y"
    - Absolute: "2024-01-01", "2024-01-01T00:00:00"
    """
    if value is None:
        return None

    value = value.strip()
    now = datetime.now(tz=timezone.utc)

    match = re.match(r"^(\d+)([hdwmy])$", value.lower())
    if match:
        amount = int(match.group(1))
        unit = match.group(2)
        if unit == "h":
            delta = timedelta(hours=amount)
        elif unit == "d":
            delta = timedelta(days=amount)
        elif unit == "w":
            delta = timedelta(weeks=amount)
        elif unit == "m":
            delta = timedelta(days=amount * 30)  # Approximate
        else:
            delta = timedelta(days=amount * 365)  # Approximate
        return TimeRange(start=now - delta)

    try:
        start = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid time range: {value}") from None
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return TimeRange(start=start)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"claude-grep {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    """Search Claude conversation history."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(message: str) -> None:
    err_console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _console_progress(tracker):
    """Build a rich progress bar driven by tracker events."""
    from rich.progress import BarColumn, Progress, TextColumn, TimeRemainingColumn

    from claude_grep.progress import ProgressEvent, Stage

    progress = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeRemainingColumn(),
        console=err_console,
        transient=True,
    )
    task = progress.add_task("Searching...", total=None)

    def on_progress(update) -> None:
        if update.stage == Stage.SEARCHING:
            progress.update(task, completed=update.files_processed, total=update.total_files)

    def on_error(error: Exception) -> None:
        progress.console.print(f"[yellow]Error: {error}[/yellow]")

    def on_complete(summary) -> None:
        progress.console.print(
            f"Searched {summary.total_files_searched} files in {summary.search_duration:.1f}s, "
            f"{summary.total_matches_found} matches"
            + (f", {len(summary.errors)} errors" if summary.errors else "")
        )

    tracker.on(ProgressEvent.PROGRESS, on_progress)
    tracker.on(ProgressEvent.ERROR, on_error)
    tracker.on(ProgressEvent.COMPLETE, on_complete)
    return progress


def _resolve_project(ctx: AppContext, project: str | None) -> str | None:
    from claude_grep.projects import ProjectManager
    from claude_grep.scanner import ConversationScanner

    if project:
        return project

    manager = ProjectManager(ctx.settings, ConversationScanner(settings=ctx.settings))
    manager.load()
    return manager.get_current_context().current_project or ctx.preferences.search.default_project


def _run_search(
    ctx: AppContext,
    options: SearchOptions,
    fmt: OutputFormat,
    show_progress: bool = False,
) -> None:
    from claude_grep.formatters import FormatOptions, format_results
    from claude_grep.progress import ProgressTracker
    from claude_grep.results import ResultProcessor, ResultProcessorOptions
    from claude_grep.searcher import SearchEngine, extract_keywords

    tracker = ProgressTracker()
    engine = SearchEngine(ctx.settings.claude_projects_path, progress=tracker)
    with _console_progress(tracker) if show_progress else nullcontext():
        results = list(engine.search(options))

    processed = ResultProcessor().process_results(
        results,
        ResultProcessorOptions(
            max_results=options.limit,
            highlight_keywords=extract_keywords(options.query),
        ),
    )
    if tracker.summary:
        processed.search_stats.search_duration = tracker.summary.search_duration

    output = format_results(
        processed.results,
        fmt,
        FormatOptions(
            include_stats=ctx.preferences.display.include_stats,
            search_stats=processed.search_stats,
            truncate_length=ctx.preferences.display.max_preview_length,
        ),
    )
    console.print(output, markup=False, highlight=False, emoji=False, soft_wrap=True)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query")],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Search a specific project")
    ] = None,
    all_projects: Annotated[
        bool, typer.Option("--all-projects", "-a", help="Search all projects")
    ] = False,
    fmt: Annotated[
        OutputFormat | None, typer.Option("--format", "-f", help="Output format")
    ] = None,
    exhaustive: Annotated[
        bool | None,
        typer.Option("--exhaustive/--no-exhaustive", "-e", help="Scan every conversation"),
    ] = None,
    max_results: Annotated[
        int | None, typer.Option("--max-results", "-m", help="Maximum results to return")
    ] = None,
    time_range: Annotated[
        str | None, typer.Option("--time-range", "-t", help="Time range (e.g., 24h, 7d, 1m)")
    ] = None,
    include_errors: Annotated[
        bool, typer.Option("--include-errors", help="Only match messages with errors")
    ] = False,
    include_tool_calls: Annotated[
        bool, typer.Option("--include-tool-calls", help="Only match messages with tool calls")
    ] = False,
    file_patterns: Annotated[
        str | None,
        typer.Option("--file-patterns", help="File patterns to match (comma-separated)"),
    ] = None,
) -> None:
    """Search conversations for a query."""
    ctx = build_context()
    prefs = ctx.preferences.search

    search_project = None if all_projects else _resolve_project(ctx, project)
    if not all_projects and not search_project:
        _fail("No project detected. Use --project to specify one or --all-projects to search all.")

    exhaustive = prefs.exhaustive if exhaustive is None else exhaustive
    options = SearchOptions(
        query=query,
        project_context=search_project,
        exhaustive=exhaustive,
        limit=max_results or prefs.max_results,
        time_range=parse_time_range(time_range),
        include_errors=True if include_errors else None,
        include_tool_calls=True if include_tool_calls else None,
        file_patterns=[p.strip() for p in file_patterns.split(",") if p.strip()]
        if file_patterns
        else None,
    )
    _run_search(
        ctx,
        options,
        fmt or ctx.preferences.display.default_format,
        show_progress=exhaustive and ctx.preferences.performance.enable_progress_bar,
    )


@app.command()
def files(
    pattern: Annotated[str, typer.Argument(help="File name or pattern (e.g., '*.test.ts')")],
    project: Annotated[
        str | None, typer.Option("--project", "-p", help="Search a specific project")
    ] = None,
    fmt: Annotated[
        OutputFormat | None, typer.Option("--format", "-f", help="Output format")
    ] = None,
    max_results: Annotated[
        int | None, typer.Option("--max-results", "-m", help="Maximum results")
    ] = None,
    time_range: Annotated[
        str | None, typer.Option("--time-range", "-t", help="Time range filter")
    ] = None,
) -> None:
    """Find conversations that mention specific files."""
    ctx = build_context()

    search_project = _resolve_project(ctx, project)
    if not search_project:
        _fail("No project detected. Use --project to specify one.")

    options = SearchOptions(
        query="",
        project_context=search_project,
        file_patterns=[pattern],
        limit=max_results or ctx.preferences.search.max_results,
        time_range=parse_time_range(time_range),
    )
    _run_search(ctx, options, fmt or ctx.preferences.display.default_format)


@app.command()
def show(
    session_id: Annotated[str, typer.Argument(help="Session ID from search results")],
    fmt: Annotated[
        OutputFormat, typer.Option("--format", "-f", help="Output format (markdown, json)")
    ] = OutputFormat.MARKDOWN,
    highlight: Annotated[
        str | None, typer.Option("--highlight", "-h", help="Terms to highlight (comma-separated)")
    ] = None,
) -> None:
    """Show a full conversation."""
    from claude_grep.formatters import format_conversation
    from claude_grep.searcher import SearchEngine

    if fmt not in (OutputFormat.MARKDOWN, OutputFormat.JSON):
        raise typer.BadParameter("show supports markdown or json", param_hint="--format")

    ctx = build_context()
    conversation = SearchEngine(ctx.settings.claude_projects_path).get_conversation_by_id(session_id)
    if conversation is None:
        _fail(f"Conversation {session_id} not found.")

    terms = [t.strip() for t in highlight.split(",") if t.strip()] if highlight else None
    console.print(
        format_conversation(conversation, fmt, highlight_terms=terms),
        markup=False,
        highlight=False,
        emoji=False,
        soft_wrap=True,
    )


@project_app.command("list")
def project_list() -> None:
    """List all available projects."""
    from claude_grep.projects import ProjectManager
    from claude_grep.scanner import ConversationScanner

    ctx = build_context()
    scanner = ConversationScanner(settings=ctx.settings)
    manager = ProjectManager(ctx.settings, scanner)
    manager.load()
    current = manager.get_current_context().current_project

    projects = scanner.list_projects()
    if not projects:
        console.print("[yellow]No projects found.[/yellow]")
        return

    console.print("Available projects:")
    for name in projects:
        if name == current:
            console.print(f"  [green]→ {name} (current)[/green]", highlight=False)
        else:
            console.print(f"    [cyan]{name}[/cyan]", highlight=False)


@project_app.command("current")
def project_current() -> None:
    """Show the detected project context."""
    from claude_grep.projects import ProjectManager
    from claude_grep.scanner import ConversationScanner

    ctx = build_context()
    manager = ProjectManager(ctx.settings, ConversationScanner(settings=ctx.settings))
    manager.load()
    context = manager.get_current_context()

    console.print(f"Current project: {context.current_project or 'None'}", highlight=False)
    console.print(f"Working directory: {context.working_directory}", highlight=False)
    console.print(f"Claude Code mode: {'Yes' if context.is_claude_code else 'No'}")


@project_app.command("use")
def project_use(name: Annotated[str, typer.Argument(help="Project name")]) -> None:
    """Switch to a different project."""
    from claude_grep.projects import ProjectManager, ProjectNotFoundError
    from claude_grep.scanner import ConversationScanner

    ctx = build_context()
    manager = ProjectManager(ctx.settings, ConversationScanner(settings=ctx.settings))
    manager.load()
    try:
        manager.switch_project(name)
    except ProjectNotFoundError as e:
        _fail(str(e))
    console.print(f"[green]Switched to project: {name}[/green]")


@config_app.command("show")
def config_show() -> None:
    """Print all preferences."""
    ctx = build_context()
    console.print_json(ctx.preferences.model_dump_json())


@config_app.command("set")
def config_set(
    default_format: Annotated[OutputFormat | None, typer.Option(help="Default output format")] = None,
    include_stats: Annotated[bool | None, typer.Option(help="Append search statistics")] = None,
    max_preview_length: Annotated[int | None, typer.Option(min=1, help="Preview length")] = None,
    show_ranking_explanation: Annotated[bool | None, typer.Option()] = None,
    max_results: Annotated[int | None, typer.Option(min=1, help="Default result limit")] = None,
    default_days_back: Annotated[int | None, typer.Option(min=1)] = None,
    exhaustive: Annotated[bool | None, typer.Option(help="Exhaustive search by default")] = None,
    default_project: Annotated[str | None, typer.Option(help="Fallback project")] = None,
    batch_size: Annotated[int | None, typer.Option(min=1)] = None,
    memory_limit: Annotated[int | None, typer.Option(min=1, help="MB")] = None,
    enable_progress_bar: Annotated[bool | None, typer.Option()] = None,
) -> None:
    """Update preferences."""
    ctx = build_context()
    prefs = ctx.preferences
    updates = [
        (prefs.display, {
            "default_format": default_format,
            "include_stats": include_stats,
            "max_preview_length": max_preview_length,
            "show_ranking_explanation": show_ranking_explanation,
        }),
        (prefs.search, {
            "max_results": max_results,
            "default_days_back": default_days_back,
            "exhaustive": exhaustive,
            "default_project": default_project,
        }),
        (prefs.performance, {
            "batch_size": batch_size,
            "memory_limit": memory_limit,
            "enable_progress_bar": enable_progress_bar,
        }),
    ]

    changed = []
    for section, values in updates:
        for key, value in values.items():
            if value is not None:
                setattr(section, key, value)
                changed.append(f"{key}={value.value if isinstance(value, OutputFormat) else value}")

    if not changed:
        _fail("Nothing to set. See --help for available options.")

    ctx.store.save(prefs)
    console.print(f"[green]Updated {', '.join(changed)}[/green]", highlight=False)


@config_app.command("reset")
def config_reset(
    category: Annotated[
        PreferenceCategory | None, typer.Option("--category", "-c", help="Only reset one category")
    ] = None,
) -> None:
    """Reset preferences to defaults."""
    ctx = build_context()
    ctx.store.reset(category)
    console.print(f"[green]Reset {category.value if category else 'all'} preferences to defaults[/green]")


if __name__ == "__main__":
    app()
