"""Tests for the formatters module."""

import csv
import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from claude_grep.formatters import (
    CSV_HEADERS,
    FormatOptions,
    format_conversation,
    format_csv,
    format_duration,
    format_json,
    format_list,
    format_markdown,
    format_results,
    format_table,
    relative_time,
)
from claude_grep.models import (
    ConversationResult,
    OutputFormat,
    ParsedMessage,
    SearchResult,
    SearchResultMetadata,
)
from claude_grep.results import SearchStatistics

NOW = datetime.now(tz=timezone.utc)


@pytest.fixture
def results():
    return [
        SearchResult(
            session_id="abc-123",
            timestamp=NOW - timedelta(hours=3),
            matched_content="Fix the **login** bug\nin the form",
            files=["src/login.ts", "package.json"],
            score=0.8123,
            project_name="web-app",
            branch="main",
            match_count=2,
            metadata=SearchResultMetadata(total_messages=4, has_errors=True, git_branch="main"),
        ),
        SearchResult(
            session_id="def-456",
            timestamp=NOW - timedelta(days=2),
            matched_content='He said "hi", then left',
            files=[],
            score=0.4,
            project_name="cli-tool",
            match_count=1,
            metadata=SearchResultMetadata(total_messages=1),
        ),
    ]


@pytest.fixture
def stats():
    return SearchStatistics(
        total_conversations_searched=10,
        total_matches_found=2,
        average_score=0.606,
        project_distribution={"web-app": 1, "cli-tool": 1},
        search_duration=1.5,
    )


def test_relative_time():
    """Test relative times in long and short forms."""
    now = datetime(2024, 6, 1, 12, tzinfo=timezone.utc)
    assert relative_time(now - timedelta(days=1), now) == "1 day ago"
    assert relative_time(now - timedelta(days=3), now) == "3 days ago"
    assert relative_time(now - timedelta(hours=5), now, short=True) == "5h ago"
    assert relative_time(now - timedelta(minutes=1), now) == "1 minute ago"
    assert relative_time(now + timedelta(minutes=5), now) == "0 minutes ago"


def test_format_duration():
    """Test durations are rendered in a readable unit."""
    assert format_duration(0.25) == "250ms"
    assert format_duration(1.5) == "1.5s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(None) == "unknown"


def test_empty_results():
    """Test each format's empty output."""
    options = FormatOptions()
    assert format_table([], options) == "No results found."
    assert format_list([], options) == "No results found."
    assert format_markdown([], options) == "## No results found"
    assert format_csv([], options) == ",".join(CSV_HEADERS)
    assert json.loads(format_json([], options)) == {"results": []}


def test_format_table(results, stats):
    """Test the table lists sessions and appends statistics."""
    output = format_table(results, FormatOptions(include_stats=True, search_stats=stats))

    assert "abc-123" in output
    assert "def-456" in output
    assert "0.81" in output
    assert "Found 2 matches in 10 conversations" in output
    assert "Projects: web-app (1), cli-tool (1)" in output


def test_format_list(results, stats):
    """Test the list format shows one block per result."""
    output = format_list(results, FormatOptions(include_stats=True, search_stats=stats))

    assert output.startswith("Search Results (2 matches)")
    assert "1. Session abc-123 (3 hours ago)" in output
    assert "   Branch: main" in output
    assert "   Files: src/login.ts, package.json" in output
    assert "Total conversations searched: 10" in output


def test_format_csv_escapes_fields(results):
    """Test CSV output is parseable and quotes embedded quotes."""
    output = format_csv(results, FormatOptions())
    rows = list(csv.reader(io.StringIO(output)))

    assert rows[0] == CSV_HEADERS
    assert rows[1][0] == "abc-123"
    assert rows[1][4] == "0.812"
    assert rows[1][6] == "src/login.ts; package.json"
    assert rows[1][7] == "Fix the **login** bug in the form"
    assert rows[2][7] == 'He said "hi", then left'


def test_format_markdown_groups_projects(results, stats):
    """Test markdown groups results by project when there are several."""
    output = format_markdown(results, FormatOptions(include_stats=True, search_stats=stats))

    assert output.startswith("# Search Results")
    assert "## Project: web-app" in output
    assert "## Project: cli-tool" in output
    assert "- **Files:** `src/login.ts`, `package.json`" in output
    assert "> in the form" in output
    assert "| Conversations Searched | 10 |" in output


def test_format_json(results, stats):
    """Test JSON output includes results and statistics."""
    data = json.loads(format_json(results, FormatOptions(include_stats=True, search_stats=stats)))

    assert data["results"][0]["session_id"] == "abc-123"
    assert data["results"][0]["score"] == 0.8123
    assert data["results"][0]["metadata"]["has_errors"] is True
    assert data["statistics"]["total_conversations_searched"] == 10
    assert data["statistics"]["project_distribution"] == {"web-app": 1, "cli-tool": 1}


def test_format_results_dispatch(results):
    """Test format names dispatch and unknown formats fall back to JSON."""
    assert format_results(results, OutputFormat.CSV).startswith("Session ID,")
    assert format_results(results, "list").startswith("Search Results")
    assert "results" in json.loads(format_results(results, "yaml"))


def test_format_conversation():
    """Test a full conversation renders in markdown and JSON."""
    messages = [
        ParsedMessage("s1", NOW, "How does auth work?", "m1", "user"),
        ParsedMessage("s1", NOW, "Auth uses JWT in src/auth.ts", "m2", "assistant", files=["src/auth.ts"]),
    ]
    conversation = ConversationResult(
        session_id="s1",
        timestamp=NOW,
        matched_content="How does auth work?",
        files=["src/auth.ts"],
        score=1.0,
        project_name="web-app",
        metadata=SearchResultMetadata(total_messages=2),
        content="",
        messages=messages,
    )

    markdown = format_conversation(conversation, highlight_terms=["auth"])
    assert markdown.startswith("# Conversation: s1")
    assert "## User (" in markdown
    assert "## Assistant (" in markdown
    assert "How does **auth** work?" in markdown
    assert "_Files: `src/auth.ts`_" in markdown

    data = json.loads(format_conversation(conversation, OutputFormat.JSON))
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
