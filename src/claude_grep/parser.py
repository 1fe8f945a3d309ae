"""Streaming JSONL parser for conversation transcripts."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from claude_grep.models import ParsedMessage, to_utc

logger = logging.getLogger(__name__)

# <sessionId>[_conversation].jsonl
SESSION_FILE_PATTERN = re.compile(r"^(.+?)(?:_conversation)?\.jsonl$")

# Longer extensions come first within the alternation (tsx before ts, json before js)
FILE_PATTERNS = [
    re.compile(
        r"(?:^|\s)([A-Za-z0-9\-_./]+\.(?:tsx|jsx|ts|js|md|json|yml|yaml|toml|txt|py|java|go|rs"
        r"|cpp|c|h|hpp|css|html|vue|svelte))\b",
        re.IGNORECASE,
    ),
    # Task files: TASK-0001-12-name.md
    re.compile(r"(TASK-\d{4}-\d{1,3}(?:\.\d+)?(?:-[A-Za-z0-9\-]+)?\.md)", re.IGNORECASE),
    re.compile(r"(\.project/[A-Za-z0-9\-_./]+)", re.IGNORECASE),
    re.compile(r"(package\.json|tsconfig\.json|\.eslintrc|\.prettierrc|\.gitignore)", re.IGNORECASE),
]

CODE_BLOCK_PATTERN = re.compile(r"```[a-zA-Z]*\s*\n?([^`]+)```")
IMPORT_PATTERN = re.compile(
    r"(?:import|require)\s*(?:(?:\{[^}]*\}|\w+)\s*from\s*)?(?:\(?\s*)?['\"`]([^'\"`]+)['\"`]"
)

ERROR_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"error:",
        r"exception:",
        r"failed:",
        r"failure:",
        r"traceback",
        r"stack trace",
        r"typeerror",
        r"referenceerror",
        r"syntaxerror",
        r"error\s+at\s+",
    )
]

TOOL_BLOCK_TYPES = ("tool_use", "tool_result")


def session_id_from_path(path: Path) -> str:
    """Derive the session id from a transcript filename."""
    match = SESSION_FILE_PATTERN.match(path.name)
    if match:
        return match.group(1)
    return path.name.replace(".jsonl", "")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def extract_content(content: Any) -> str:
    """Flatten message content (string or content blocks) into plain text."""
    if isinstance(content, str):
        return content

    if not isinstance(content, list):
        return ""

    parts: list[str] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif block_type == "tool_use":
            parts.append(f"[Tool: {block.get('name')}]")
        elif block_type == "tool_result":
            parts.append(f"[Tool Result: {block.get('tool_use_id')}]")

    return "\n".join(part for part in parts if part).strip()


def extract_files(content: str) -> list[str]:
    """Extract referenced file paths from message text.

    Matches are deduplicated in first-seen order. Anything starting with
    ``http`` is dropped so URLs ending in a known extension are not reported.
    """
    files: dict[str, None] = {}

    for pattern in FILE_PATTERNS:
        for match in pattern.finditer(content):
            candidate = match.group(1).strip()
            if candidate and not candidate.startswith("http"):
                files[candidate] = None

    # import/require string literals inside fenced code blocks
    for block in CODE_BLOCK_PATTERN.finditer(content):
        for imp in IMPORT_PATTERN.finditer(block.group(1)):
            candidate = imp.group(1).strip()
            if candidate and not candidate.startswith("http"):
                files[candidate] = None

    return list(files)


def detect_error(content: str) -> bool:
    """Check message text for error indicators."""
    lowered = content.lower()
    return any(pattern.search(lowered) for pattern in ERROR_PATTERNS)


def detect_tool_call(content: Any) -> bool:
    """True if block-structured content contains a tool invocation or result."""
    if not isinstance(content, list):
        return False
    return any(
        isinstance(block, dict) and block.get("type") in TOOL_BLOCK_TYPES for block in content
    )


def _string_field(record: dict[str, Any], key: str) -> str:
    value = record.get(key)
    return value if isinstance(value, str) else ""


def parse_record(record: dict[str, Any], default_session_id: str = "") -> ParsedMessage | None:
    """Build a ParsedMessage from one decoded transcript line.

    Returns None for records without any text content.
    """
    message = record.get("message")
    raw_content = message.get("content") if isinstance(message, dict) else None

    content = extract_content(raw_content)
    if not content:
        return None

    return ParsedMessage(
        session_id=_string_field(record, "sessionId") or default_session_id,
        timestamp=parse_timestamp(record.get("timestamp")),
        content=content,
        message_id=_string_field(record, "uuid"),
        role=_string_field(record, "type"),
        files=extract_files(content),
        branch=_string_field(record, "gitBranch") or None,
        has_error=detect_error(content),
        has_tool_call=detect_tool_call(raw_content),
    )


def parse_conversation(path: str | Path) -> Iterator[ParsedMessage]:
    """Stream messages out of a JSONL transcript, one line at a time.

    Blank lines are skipped silently and malformed lines are logged and
    skipped. A missing or unreadable file raises to the caller.
    """
    path = Path(path)
    default_session_id = session_id_from_path(path)

    with open(path, encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed line %d in %s: %s", line_num, path, e)
                continue

            if not isinstance(record, dict):
                logger.warning("Skipping non-object line %d in %s", line_num, path)
                continue

            parsed = parse_record(record, default_session_id)
            if parsed is not None:
                yield parsed
