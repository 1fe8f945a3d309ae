"""Pytest fixtures for claude-grep tests."""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def make_record(
    role: str,
    content,
    uuid: str = "msg",
    session_id: str = "session",
    timestamp: str | None = "2024-05-30T10:00:00Z",
    branch: str | None = None,
) -> dict:
    record = {
        "type": role,
        "uuid": uuid,
        "sessionId": session_id,
        "message": {"role": role, "content": content},
    }
    if timestamp is not None:
        record["timestamp"] = timestamp
    if branch is not None:
        record["gitBranch"] = branch
    return record


def write_session(
    projects_dir: Path,
    project: str,
    session_id: str,
    records: list,
    mtime: datetime | None = None,
) -> Path:
    """Write a transcript; dict records are JSON-encoded, strings are written raw."""
    project_dir = projects_dir / project
    project_dir.mkdir(parents=True, exist_ok=True)
    path = project_dir / f"{session_id}.jsonl"

    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write((record if isinstance(record, str) else json.dumps(record)) + "\n")

    if mtime is not None:
        ts = mtime.timestamp()
        os.utime(path, (ts, ts))
    return path


@pytest.fixture
def projects_dir(temp_dir):
    """Empty conversation root laid out as <root>/<project>/<session>.jsonl."""
    root = temp_dir / "projects"
    root.mkdir()
    return root


@pytest.fixture
def sample_projects(projects_dir):
    """Two projects with a handful of conversations of different ages."""
    write_session(
        projects_dir,
        "web-app",
        "auth-session",
        [
            make_record(
                "user",
                "How do I implement authentication in src/auth.ts?",
                "m1",
                "auth-session",
                branch="feature/auth",
            ),
            make_record(
                "assistant",
                [
                    {"type": "text", "text": "For authentication, you can use JWT tokens."},
                    {"type": "tool_use", "name": "Read", "input": {"path": "src/auth.ts"}},
                ],
                "m2",
                "auth-session",
                branch="feature/auth",
            ),
        ],
        mtime=FIXED_NOW - timedelta(days=1),
    )
    write_session(
        projects_dir,
        "web-app",
        "bug-session",
        [
            make_record("user", "The build fails with TypeError: x is undefined", "m1", "bug-session"),
            make_record("assistant", "Check utils/helpers.js for the undefined value.", "m2", "bug-session"),
        ],
        mtime=FIXED_NOW - timedelta(days=10),
    )
    write_session(
        projects_dir,
        "cli-tool",
        "docs-session",
        [
            make_record("user", "Please update README.md with usage docs", "m1", "docs-session"),
            make_record("assistant", "I updated the README.md file.", "m2", "docs-session"),
        ],
        mtime=FIXED_NOW - timedelta(days=40),
    )
    return projects_dir


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
