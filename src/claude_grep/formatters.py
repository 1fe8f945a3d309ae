"""Render search results and conversations as text."""

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from rich.console import Console
from rich.table import Table
from rich.text import Text

from claude_grep.models import ConversationResult, OutputFormat, SearchResult, to_utc
from claude_grep.results import SearchStatistics, highlight_text

NO_RESULTS = "No results found."
CSV_HEADERS = [
    "Session ID",
    "Timestamp",
    "Project",
    "Branch",
    "Score",
    "Match Count",
    "Files",
    "Preview",
]


@dataclass
class FormatOptions:
    include_stats: bool = False
    search_stats: SearchStatistics | None = None
    max_width: int = 120
    truncate_length: int = 200


def relative_time(timestamp: datetime, now: datetime | None = None, short: bool = False) -> str:
    if now is None:
        now = datetime.now(tz=timezone.utc)
    age = to_utc(now) - to_utc(timestamp)
    minutes = max(0, int(age.total_seconds() // 60))
    hours, days = minutes // 60, minutes // 1440

    if short:
        if days > 0:
            return f"{days}d ago"
        if hours > 0:
            return f"{hours}h ago"
        return f"{minutes}m ago"

    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return f"{minutes} minute{'s' if minutes != 1 else ''} ago"


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "unknown"
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{int(seconds // 60)}m {int(seconds % 60)}s"


def _one_line(text: str) -> str:
    return text.replace("\n", " ")


def _truncate(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return text[: max(0, length - 3)] + "..."


def format_table(results: list[SearchResult], options: FormatOptions) -> str:
    if not results:
        return NO_RESULTS

    table = Table(show_lines=False, expand=False)
    table.add_column("Session", no_wrap=True)
    table.add_column("Time", no_wrap=True)
    table.add_column("Score", justify="right", no_wrap=True)
    table.add_column("Files", max_width=30, overflow="ellipsis")
    table.add_column("Preview", overflow="fold")

    for result in results:
        table.add_row(
            Text(result.session_id),
            Text(relative_time(result.timestamp, short=True)),
            Text(f"{result.score:.2f}"),
            Text(_truncate(", ".join(result.files), 30)),
            Text(_truncate(_one_line(result.matched_content), options.truncate_length)),
        )

    buffer = io.StringIO()
    console = Console(file=buffer, width=options.max_width, color_system=None, force_terminal=False)
    console.print(table)
    output = buffer.getvalue()

    if options.include_stats and options.search_stats:
        stats = options.search_stats
        lines = [
            f"Found {stats.total_matches_found} matches in "
            f"{stats.total_conversations_searched} conversations",
            f"Search completed in {format_duration(stats.search_duration)}",
        ]
        if len(stats.project_distribution) > 1:
            lines.append(
                "Projects: "
                + ", ".join(f"{p} ({c})" for p, c in stats.project_distribution.items())
            )
        output += "\n" + "\n".join(lines)

    return output


def format_list(results: list[SearchResult], options: FormatOptions) -> str:
    if not results:
        return NO_RESULTS

    lines = [f"Search Results ({len(results)} matches)", ""]
    for i, result in enumerate(results, 1):
        lines.append(f"{i}. Session {result.session_id} ({relative_time(result.timestamp)})")
        lines.append(f"   Project: {result.project_name}")
        if result.branch:
            lines.append(f"   Branch: {result.branch}")
        if result.files:
            lines.append(f"   Files: {', '.join(result.files)}")
        lines.append(f"   Score: {result.score:.2f}")
        lines.append(f"   Matches: {result.match_count or 1}")
        preview = _one_line(result.matched_content)
        ellipsis = "..." if len(preview) > options.truncate_length else ""
        lines.append(f'   Preview: "{preview[: options.truncate_length]}{ellipsis}"')
        lines.append("")

    if options.include_stats and options.search_stats:
        stats = options.search_stats
        lines.extend([
            "--- Statistics ---",
            f"Total conversations searched: {stats.total_conversations_searched}",
            f"Total matches found: {stats.total_matches_found}",
            f"Average score: {stats.average_score:.3f}",
        ])
        if stats.search_duration:
            lines.append(f"Search time: {format_duration(stats.search_duration)}")
        if stats.earliest and stats.latest:
            lines.append(f"Date range: {stats.earliest.date()} - {stats.latest.date()}")

    return "\n".join(lines)


def format_csv(results: list[SearchResult], options: FormatOptions) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for result in results:
        writer.writerow([
            result.session_id,
            to_utc(result.timestamp).isoformat(),
            result.project_name,
            result.branch or "",
            f"{result.score:.3f}",
            result.match_count or 1,
            "; ".join(result.files),
            _one_line(result.matched_content)[:500],
        ])
    return buffer.getvalue().rstrip("\n")


def _markdown_results(results: list[SearchResult]) -> list[str]:
    lines: list[str] = []
    for i, result in enumerate(results, 1):
        lines.append(f"### {i}. Session `{result.session_id}`")
        lines.append("")
        lines.append(f"- **Time:** {relative_time(result.timestamp)}")
        lines.append(f"- **Score:** {result.score:.3f}")
        if result.branch:
            lines.append(f"- **Branch:** {result.branch}")
        if result.files:
            lines.append(f"- **Files:** {', '.join(f'`{f}`' for f in result.files)}")
        lines.append(f"- **Matches:** {result.match_count or 1}")
        lines.append("")
        lines.append("**Preview:**")
        lines.extend(f"> {line}" for line in result.matched_content.split("\n"))
        lines.append("")
        if i < len(results):
            lines.extend(["---", ""])
    return lines


def format_markdown(results: list[SearchResult], options: FormatOptions) -> str:
    if not results:
        return "## No results found"

    lines = ["# Search Results", "", f"**Found {len(results)} matches**", ""]

    grouped: dict[str, list[SearchResult]] = {}
    for result in results:
        grouped.setdefault(result.project_name or "unknown", []).append(result)

    if len(grouped) > 1:
        for project, project_results in grouped.items():
            lines.extend([f"## Project: {project}", ""])
            lines.extend(_markdown_results(project_results))
    else:
        lines.extend(_markdown_results(results))

    if options.include_stats and options.search_stats:
        stats = options.search_stats
        lines.extend([
            "## Search Statistics",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Conversations Searched | {stats.total_conversations_searched} |",
            f"| Total Matches | {stats.total_matches_found} |",
            f"| Average Score | {stats.average_score:.3f} |",
        ])
        if stats.search_duration:
            lines.append(f"| Search Time | {format_duration(stats.search_duration)} |")
        if stats.project_distribution:
            lines.extend(["", "### Results by Project", ""])
            lines.extend(
                f"- **{project}**: {count} matches"
                for project, count in stats.project_distribution.items()
            )

    return "\n".join(lines)


def _result_to_dict(result: SearchResult) -> dict[str, Any]:
    return {
        "session_id": result.session_id,
        "timestamp": to_utc(result.timestamp).isoformat(),
        "project_name": result.project_name,
        "branch": result.branch,
        "score": round(result.score, 4),
        "match_count": result.match_count or 1,
        "files": result.files,
        "matched_content": result.matched_content,
        "metadata": {
            "total_messages": result.metadata.total_messages,
            "has_errors": result.metadata.has_errors,
            "has_tool_calls": result.metadata.has_tool_calls,
            "git_branch": result.metadata.git_branch,
            "project_path": result.metadata.project_path,
        },
    }


def format_json(results: list[SearchResult], options: FormatOptions) -> str:
    output: dict[str, Any] = {"results": [_result_to_dict(r) for r in results]}

    if options.include_stats and options.search_stats:
        stats = options.search_stats
        output["statistics"] = {
            "total_conversations_searched": stats.total_conversations_searched,
            "total_matches_found": stats.total_matches_found,
            "average_score": round(stats.average_score, 4),
            "search_duration": stats.search_duration,
            "date_range": {
                "earliest": stats.earliest.isoformat() if stats.earliest else None,
                "latest": stats.latest.isoformat() if stats.latest else None,
            },
            "project_distribution": stats.project_distribution,
        }

    return json.dumps(output, indent=2)


FORMATTERS: dict[OutputFormat, Callable[[list[SearchResult], FormatOptions], str]] = {
    OutputFormat.TABLE: format_table,
    OutputFormat.LIST: format_list,
    OutputFormat.CSV: format_csv,
    OutputFormat.MARKDOWN: format_markdown,
    OutputFormat.JSON: format_json,
}


def format_results(
    results: list[SearchResult],
    fmt: OutputFormat | str,
    options: FormatOptions | None = None,
) -> str:
    """Render results in the requested format; unknown formats fall back to JSON."""
    options = options or FormatOptions()
    try:
        formatter = FORMATTERS[OutputFormat(fmt)]
    except ValueError:
        formatter = format_json
    return formatter(results, options)


def format_conversation(
    conversation: ConversationResult,
    fmt: OutputFormat | str = OutputFormat.MARKDOWN,
    highlight_terms: list[str] | None = None,
) -> str:
    """Render a full conversation as markdown or JSON."""
    if OutputFormat(fmt) == OutputFormat.JSON:
        data = _result_to_dict(conversation)
        data["messages"] = [
            {
                "message_id": m.message_id,
                "role": m.role,
                "timestamp": m.timestamp.isoformat() if m.timestamp else None,
                "content": m.content,
                "files": m.files,
                "branch": m.branch,
                "has_error": m.has_error,
                "has_tool_call": m.has_tool_call,
            }
            for m in conversation.messages
        ]
        return json.dumps(data, indent=2)

    stamps = [m.timestamp for m in conversation.messages if m.timestamp]
    lines = [
        f"# Conversation: {conversation.session_id}",
        "",
        f"**Project:** {conversation.project_name}",
        f"**Messages:** {conversation.metadata.total_messages}",
    ]
    if stamps:
        lines.append(f"**Time Range:** {min(stamps).isoformat()} - {max(stamps).isoformat()}")
    if conversation.files:
        lines.append(f"**Files:** {', '.join(f'`{f}`' for f in conversation.files)}")
    lines.extend(["", "---", ""])

    for i, message in enumerate(conversation.messages):
        role = "User" if message.role == "user" else "Assistant"
        stamp = message.timestamp.isoformat() if message.timestamp else "unknown time"
        lines.extend([f"## {role} ({stamp})", ""])

        content = message.content
        if highlight_terms:
            content = highlight_text(content, highlight_terms)
        lines.extend([content, ""])

        if message.files:
            lines.extend([f"_Files: {', '.join(f'`{f}`' for f in message.files)}_", ""])
        if i < len(conversation.messages) - 1:
            lines.extend(["---", ""])

    return "\n".join(lines)
