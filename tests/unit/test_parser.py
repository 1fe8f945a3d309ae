"""Tests for the parser module."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from conftest import make_record, write_session

from claude_grep.parser import (
    detect_error,
    detect_tool_call,
    extract_content,
    extract_files,
    parse_conversation,
    parse_record,
    parse_timestamp,
    session_id_from_path,
)


def test_session_id_from_path():
    """Test session ids are taken from the filename."""
    assert session_id_from_path(Path("/x/abc-123.jsonl")) == "abc-123"
    assert session_id_from_path(Path("/x/abc-123_conversation.jsonl")) == "abc-123"


def test_parse_timestamp():
    """Test ISO timestamps become aware UTC datetimes."""
    assert parse_timestamp("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-15T12:00:00+02:00") == datetime(
        2024, 1, 15, 10, tzinfo=timezone.utc
    )
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_extract_content_string():
    """Test plain string content is returned as-is."""
    assert extract_content("hello") == "hello"


def test_extract_content_blocks():
    """Test text, tool_use and tool_result blocks are flattened."""
    content = [
        {"type": "text", "text": "Let me look."},
        {"type": "tool_use", "name": "Read", "input": {}},
        {"type": "tool_result", "tool_use_id": "tu_1", "content": "file body"},
        {"type": "thinking", "thinking": "hidden"},
    ]
    assert extract_content(content) == "Let me look.\n[Tool: Read]\n[Tool Result: tu_1]"


def test_extract_content_unknown_shape():
    """Test non-string, non-list content yields empty text."""
    assert extract_content(None) == ""
    assert extract_content({"text": "x"}) == ""


def test_extract_files():
    """Test file references are extracted, deduplicated and ordered."""
    files = extract_files("Edit src/app.ts and src/app.ts then check package.json")
    assert files[0] == "src/app.ts"
    assert files.count("src/app.ts") == 1
    assert "package.json" in files


def test_extract_files_task_and_project_paths():
    """Test task files and .project paths are recognized."""
    files = extract_files("See TASK-0001-12-login.md and .project/plan/notes")
    assert "TASK-0001-12-login.md" in files
    assert ".project/plan/notes" in files


def test_extract_files_ignores_urls():
    """Test URLs are not reported as files."""
    assert extract_files("http://example.com/index.html") == []


def test_extract_files_imports_in_code_blocks():
    """Test import targets inside fenced code blocks are extracted."""
    text = "```ts\nimport { x } from './lib/util'\n```"
    assert "./lib/util" in extract_files(text)


def test_detect_error():
    """Test error indicators are detected case-insensitively."""
    assert detect_error("Error: something broke")
    assert detect_error("TypeError: x is not a function")
    assert detect_error("Traceback (most recent call last)")
    assert not detect_error("All tests pass")


def test_detect_tool_call():
    """Test tool blocks are detected only in block content."""
    assert detect_tool_call([{"type": "tool_use", "name": "Bash"}])
    assert detect_tool_call([{"type": "tool_result", "tool_use_id": "x"}])
    assert not detect_tool_call([{"type": "text", "text": "tool_use"}])
    assert not detect_tool_call("tool_use")


def test_parse_record():
    """Test a full record is mapped to a ParsedMessage."""
    record = make_record(
        "assistant",
        [{"type": "text", "text": "Fixed src/index.ts"}, {"type": "tool_use", "name": "Edit"}],
        uuid="m1",
        session_id="s1",
        branch="main",
    )
    message = parse_record(record)

    assert message.session_id == "s1"
    assert message.message_id == "m1"
    assert message.role == "assistant"
    assert message.branch == "main"
    assert message.files == ["src/index.ts"]
    assert message.has_tool_call
    assert not message.has_error


def test_parse_record_empty_content():
    """Test records without text are skipped."""
    assert parse_record(make_record("user", "")) is None
    assert parse_record(make_record("user", [{"type": "thinking", "thinking": "x"}])) is None
    assert parse_record({"type": "summary"}) is None


def test_parse_record_default_session_id():
    """Test the filename session id is used when the record has none."""
    record = {"type": "user", "message": {"content": "hi there"}}
    assert parse_record(record, "from-file").session_id == "from-file"


def test_parse_conversation(temp_dir):
    """Test messages stream in file order."""
    path = write_session(
        temp_dir,
        "proj",
        "s1",
        [make_record("user", "first", "m1", "s1"), make_record("assistant", "second", "m2", "s1")],
    )
    messages = list(parse_conversation(path))
    assert [m.content for m in messages] == ["first", "second"]


def test_parse_conversation_skips_malformed_lines(temp_dir, caplog):
    """Test malformed and blank lines are skipped without aborting."""
    path = write_session(
        temp_dir,
        "proj",
        "s1",
        [
            make_record("user", "before", "m1", "s1"),
            "{not json",
            "",
            "[1, 2, 3]",
            make_record("assistant", "after", "m2", "s1"),
        ],
    )
    messages = list(parse_conversation(path))

    assert [m.content for m in messages] == ["before", "after"]
    assert "malformed line 2" in caplog.text


def test_parse_conversation_missing_file(temp_dir):
    """Test a missing file raises."""
    with pytest.raises(FileNotFoundError):
        list(parse_conversation(temp_dir / "nope.jsonl"))


def test_extract_files_mixed_references():
    """Test paths, manifests and task files in one sentence."""
    content = "Please check src/index.ts and package.json. Also look at TASK-001-feature.md"
    assert sorted(extract_files(content)) == ["TASK-001-feature.md", "package.json", "src/index.ts"]


def test_detect_error_negative_phrase():
    """Test phrases mentioning errors without an indicator are not flagged."""
    assert detect_error("TypeError: Cannot read property of undefined")
    assert not detect_error("No errors found")


def test_parse_record_keeps_whitespace_string_content():
    """Test string content is kept verbatim, even when it is only whitespace."""
    message = parse_record(make_record("user", "   "))
    assert message.content == "   "


def test_parse_record_non_string_envelope_fields():
    """Test envelope fields of the wrong type are dropped, not copied."""
    record = {
        "type": 1,
        "uuid": 42,
        "sessionId": ["s"],
        "gitBranch": {"name": "main"},
        "message": {"content": "hello"},
    }
    message = parse_record(record, "from-file")

    assert message.role == ""
    assert message.message_id == ""
    assert message.session_id == "from-file"
    assert message.branch is None
